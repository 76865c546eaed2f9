"""Live console over Socket.IO, proxied to the Wings websocket of the server's node."""
import json
import logging
import ssl
import threading

import websocket
from flask import request
from flask_socketio import emit

from . import db
from .auth import user_from_token
from .errors import PanelError
from .extensions import service, socketio

log = logging.getLogger(__name__)

_users = {}     # sid -> user id, only for sockets that authenticated on connect
_sessions = {}  # sid -> ConsoleSession
_lock = threading.Lock()


class ConsoleSession:

    def __init__(self, sid, wings, server_uuid, node_id):
        self.sid = sid
        self.wings = wings
        self.server_uuid = server_uuid
        self.node_id = node_id
        self.ws = None
        self.closed = False

    def emit(self, event, data=None):
        if data is None:
            socketio.emit(event, to=self.sid)
        else:
            socketio.emit(event, data, to=self.sid)

    def open(self):
        creds = self.wings.console_token(self.server_uuid, self.node_id)
        log.info('Console %s connecting to %s', self.sid, creds['socket'])
        self.ws = websocket.WebSocketApp(
            creds['socket'],
            header=[f"Authorization: Bearer {creds['bearer']}"],
            on_open=lambda ws: self.send('auth', creds['token']),
            on_message=self.on_message,
            on_error=self.on_error,
            on_close=self.on_close,
        )
        # Wings usually runs with a self-signed certificate
        socketio.start_background_task(self.ws.run_forever, origin=creds['origin'],
                                       sslopt={'cert_reqs': ssl.CERT_NONE})

    @property
    def connected(self):
        sock = getattr(self.ws, 'sock', None)
        return bool(sock and sock.connected) and not self.closed

    def send(self, event, *args):
        if not self.ws:
            return False
        self.ws.send(json.dumps({'event': event, 'args': list(args)}))
        return True

    def refresh_token(self):
        try:
            token = self.wings.console_token(self.server_uuid, self.node_id)['token']
        except PanelError as e:
            log.error('Console token refresh failed for %s: %s', self.server_uuid, e.message)
            return
        if self.connected:
            self.send('auth', token)

    def handle(self, event, args):
        first = args[0] if args else ''
        if event == 'auth success':
            log.info('Wings auth success for %s', self.server_uuid)
            self.emit('console:connected')
        elif event == 'console output':
            self.emit('console:output', {'line': first})
        elif event == 'status':
            self.emit('console:status', {'status': first})
        elif event == 'stats':
            try:
                self.emit('console:stats', json.loads(first or '{}'))
            except ValueError:
                pass
        elif event in ('token expiring', 'token expired'):
            self.refresh_token()
        elif event == 'jwt error':
            log.error('Wings rejected console token for %s: %s', self.server_uuid, first)
            self.emit('console:error', {'message': 'Authentication rejected by server daemon'})
            close_session(self.sid)

    def on_message(self, ws, raw):
        try:
            msg = json.loads(raw)
        except ValueError:
            return
        if isinstance(msg, dict):
            self.handle(msg.get('event'), msg.get('args') or [])

    def on_error(self, ws, error):
        if self.closed:
            return
        log.error('Console websocket error for %s: %s', self.server_uuid, error)
        self.emit('console:error', {'message': 'Console connection lost'})
        close_session(self.sid)

    def on_close(self, ws, status_code=None, reason=None):
        log.info('Console websocket closed for %s (%s)', self.server_uuid, status_code)
        self.emit('console:disconnected')
        with _lock:
            if _sessions.get(self.sid) is self:
                del _sessions[self.sid]

    def close(self):
        self.closed = True
        if self.ws:
            self.ws.close()


def close_session(sid):
    with _lock:
        session = _sessions.pop(sid, None)
    if session:
        session.close()


def session_for(sid):
    with _lock:
        return _sessions.get(sid)


# ═══════════════════════════════════════════════
# SOCKET.IO EVENTS
# ═══════════════════════════════════════════════

@socketio.on('connect')
def on_connect(auth=None):
    token = auth.get('token') if isinstance(auth, dict) else None
    user = user_from_token(token)
    if user:
        _users[request.sid] = user['id']
    log.debug('Socket %s connected, authenticated=%s', request.sid, bool(user))


@socketio.on('disconnect')
def on_disconnect(*args):
    close_session(request.sid)
    _users.pop(request.sid, None)


@socketio.on('console:join')
def on_join(data):
    user_id = _users.get(request.sid)
    if not user_id:
        return
    server_id = data.get('serverId') if isinstance(data, dict) else None
    server = db.get_one("SELECT pterodactyl_server_id FROM servers WHERE id = ? AND user_id = ? "
                        "AND status != 'deleted'", (server_id, user_id))
    if not server:
        emit('console:error', {'message': 'Server not found or access denied'})
        return

    close_session(request.sid)
    try:
        details = service('panel').get_server(server['pterodactyl_server_id'])
        session = ConsoleSession(request.sid, service('wings'), details['uuid'], details['node'])
        with _lock:
            _sessions[request.sid] = session
        session.open()
    except PanelError as e:
        close_session(request.sid)
        emit('console:error', {'message': e.message})


def _send_or_complain(event, value):
    if not _users.get(request.sid):
        return
    session = session_for(request.sid)
    if not session or not session.connected:
        emit('console:error', {'message': 'Console not connected'})
        return
    session.send(event, value)


@socketio.on('console:command')
def on_command(data):
    command = data.get('command') if isinstance(data, dict) else None
    if command:
        _send_or_complain('send command', command)


@socketio.on('console:power')
def on_power(data):
    signal = data.get('signal') if isinstance(data, dict) else None
    if signal in ('start', 'stop', 'restart', 'kill'):
        _send_or_complain('set state', signal)


@socketio.on('console:leave')
def on_leave(*args):
    close_session(request.sid)
