import click
from flask import Flask

from . import db


def register_cli(app: Flask):

    @app.cli.command('set-admin')
    @click.argument('email')
    def set_admin(email):
        """Promote an existing user to admin."""
        user = db.get_one('SELECT id, role FROM users WHERE email = ?', (email.strip().lower(),))
        if not user:
            raise click.ClickException(f'User not found: {email}')
        if user['role'] == 'admin':
            click.echo(f'{email} is already an admin')
            return
        db.execute("UPDATE users SET role = 'admin' WHERE id = ?", (user['id'],))
        click.echo(f'{email} is now an admin')

    @app.cli.command('init-db')
    def init_db_command():
        """Create tables and seed defaults."""
        db.init_db()
        click.echo('Database ready')
