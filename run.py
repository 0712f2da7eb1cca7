import click
from stokvel import create_app
from stokvel.models import UserRole, UserStatus
from stokvel.services import user_service

app = create_app()


@app.cli.command('create-admin')
@click.argument('email')
@click.password_option()
@click.option('--name', default='Administrator', help='Full name of the admin')
def create_admin(email, password, name):
    """Create an active admin account."""
    user = user_service.register_user(
        full_name=name,
        email=email,
        phone='',
        password=password,
        role=UserRole.ADMIN.value,
        status=UserStatus.ACTIVE.value
    )
    click.echo(f"Admin {user.email} created")


if __name__ == '__main__':
    app.run(debug=True)
