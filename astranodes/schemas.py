"""Request-body models. Routes call `parse(Model)` and let ValidationError reach the error handler."""
import datetime
from typing import List, Literal, Optional, Union

from flask import request
from pydantic import BaseModel, Field

DurationType = Literal['weekly', 'monthly', 'custom', 'days', 'lifetime']
ProjectType = Literal['plugin', 'mod', 'datapack', 'shader', 'resourcepack', 'modpack']


def parse(model, data=None):
    if data is None:
        data = request.get_json(silent=True) or {}
    return model.model_validate(data)


# auth

class Credentials(BaseModel):
    email: str = Field(pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$', max_length=254)
    password: str = Field(min_length=8, max_length=128)


class ResetPassword(BaseModel):
    currentPassword: str = Field(min_length=8)
    newPassword: str = Field(min_length=8, max_length=128)


# servers

class Purchase(BaseModel):
    plan_type: Literal['coin', 'real']
    plan_id: int = Field(gt=0)
    server_name: str = Field(min_length=3, max_length=60)
    location: Optional[str] = Field(default=None, max_length=80)
    node_id: Optional[int] = Field(default=None, gt=0)
    egg_id: Optional[int] = Field(default=None, gt=0)
    software: Optional[str] = Field(default=None, max_length=40)


class Renew(BaseModel):
    server_id: int = Field(gt=0)


# server manage

class Command(BaseModel):
    command: str = Field(min_length=1, max_length=512)


class Power(BaseModel):
    signal: Literal['start', 'stop', 'restart', 'kill']


class WriteFile(BaseModel):
    path: str = Field(min_length=1, max_length=512)
    content: str = Field(max_length=5 * 1024 * 1024)


class DeleteFiles(BaseModel):
    root: str = '/'
    files: List[str] = Field(min_length=1, max_length=50)


class CreateFolder(BaseModel):
    root: str = '/'
    name: str = Field(min_length=1, max_length=255)


class RenamePair(BaseModel):
    from_: str = Field(alias='from', min_length=1)
    to: str = Field(min_length=1)


class RenameFiles(BaseModel):
    root: str = '/'
    files: List[RenamePair] = Field(min_length=1, max_length=50)


class Properties(BaseModel):
    content: str = Field(min_length=1, max_length=100000)


class World(BaseModel):
    world_name: str = Field(default='world', min_length=1, max_length=100, pattern=r'^[A-Za-z0-9_\-. ]+$')


class InstallPlugin(BaseModel):
    source: Literal['modrinth', 'curseforge']
    slug: Optional[str] = Field(default=None, min_length=1, max_length=128, pattern=r'^[A-Za-z0-9_-]+$')
    projectId: Optional[Union[int, str]] = None
    fileId: Optional[Union[int, str]] = None
    versionId: Optional[str] = None
    type: ProjectType = 'plugin'


class DeletePlugin(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    type: ProjectType = 'plugin'


class Version(BaseModel):
    version: str = Field(min_length=1, max_length=20)


class StartupVariable(BaseModel):
    key: str = Field(min_length=1, max_length=128)
    value: str = Field(max_length=1024)


class PlayerAction(BaseModel):
    action: Literal['list', 'kick', 'ban', 'op', 'deop', 'pardon']
    player: Optional[str] = Field(default=None, max_length=32, pattern=r'^[A-Za-z0-9_]*$')


class BackupCreate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)


# coins / coupons / billing

class Claim(BaseModel):
    earnToken: str = Field(min_length=64, max_length=64)


class Redeem(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class UtrSubmission(BaseModel):
    amount: float = Field(gt=0)
    utr_number: str = Field(min_length=4, max_length=64)


# tickets

class TicketCreate(BaseModel):
    category: Literal['Billing', 'Server Issue', 'Bug', 'Other', 'General Inquiry']
    subject: str = Field(min_length=5, max_length=200)
    message: str = Field(min_length=10, max_length=2000)
    priority: Literal['Low', 'Medium', 'High'] = 'Medium'


class TicketReply(BaseModel):
    message: str = Field(min_length=1, max_length=2000)


class TicketStatus(BaseModel):
    status: Literal['open', 'closed']


# admin

class CoinPlan(BaseModel):
    name: str = Field(min_length=2)
    icon: str = 'Package'
    ram: int = Field(gt=0)
    cpu: int = Field(gt=0)
    storage: int = Field(gt=0)
    coin_price: int = Field(gt=0)
    duration_type: DurationType
    duration_days: Optional[int] = Field(default=None, gt=0)
    limited_stock: bool = False
    stock_amount: Optional[int] = Field(default=None, gt=0)
    one_time_purchase: bool = False
    backup_count: int = Field(default=0, ge=0)
    extra_ports: int = Field(default=0, ge=0)


class RealPlan(BaseModel):
    name: str = Field(min_length=2)
    icon: str = 'Server'
    ram: int = Field(gt=0)
    cpu: int = Field(gt=0)
    storage: int = Field(gt=0)
    price: float = Field(gt=0)
    duration_type: DurationType
    duration_days: Optional[int] = Field(default=None, gt=0)
    limited_stock: bool = False
    stock_amount: Optional[int] = Field(default=None, gt=0)
    backup_count: int = Field(default=0, ge=0)
    extra_ports: int = Field(default=0, ge=0)


class Coupon(BaseModel):
    code: str = Field(min_length=3, max_length=64)
    coin_reward: int = Field(gt=0)
    max_uses: int = Field(gt=0)
    per_user_limit: int = Field(default=1, gt=0)
    expires_at: Optional[datetime.datetime] = None
    active: bool = True


class CoinSettings(BaseModel):
    coins_per_minute: int = Field(gt=0)


class Flag(BaseModel):
    flagged: bool


class SiteSettings(BaseModel):
    siteName: Optional[str] = Field(default=None, min_length=2, max_length=100)
    heroTitle: Optional[str] = Field(default=None, max_length=180)
    heroSubtitle: Optional[str] = Field(default=None, max_length=600)
    backgroundOverlayOpacity: Optional[float] = Field(default=None, ge=0, le=1)
    maintenanceMode: Optional[bool] = None


class SectionContent(BaseModel):
    content: Union[dict, list]


class LandingPlan(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    price: float = Field(ge=0)
    ram: int = Field(gt=0)
    cpu: int = Field(gt=0)
    storage: int = Field(gt=0)
    features: List[str] = Field(default_factory=list)
    popular: bool = False
    active: bool = True
