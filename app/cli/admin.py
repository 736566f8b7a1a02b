import click
import uuid
from app.core.database import SessionLocal
from app.models.user import User
from app.services.account_service import AccountService
from app.services.subscription_service import SubscriptionService, is_subscription_valid
import logging

logger = logging.getLogger(__name__)


def _find_user(db, email, user_id):
    if user_id:
        try:
            return db.query(User).filter(User.id == uuid.UUID(user_id)).first()
        except ValueError:
            return None
    return db.query(User).filter(User.email == email).first()


def _describe(user: User) -> str:
    return user.email or str(user.id)


@click.group()
def cli():
    """Rocketstart account administration"""
    pass


@cli.command()
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (UUID)')
def show(email, user_id):
    """Show an account with its onboarding and subscription state"""
    if not email and not user_id:
        click.echo("❌ Please provide --email or --id for this operation", err=True)
        return

    db = SessionLocal()
    try:
        user = _find_user(db, email, user_id)
        if not user:
            click.echo(f"❌ User not found: {user_id or email}", err=True)
            return

        subscription = SubscriptionService().get_current_subscription(db, user.id)
        preferences = user.preferences

        click.echo(f"User {_describe(user)}")
        click.echo(f"  id:           {user.id}")
        click.echo(f"  firebase uid: {user.firebase_uid}")
        click.echo(f"  deleted:      {'yes (' + user.deleted_at.isoformat() + ')' if user.is_deleted and user.deleted_at else 'yes' if user.is_deleted else 'no'}")
        click.echo(f"  onboarded:    {'yes' if preferences and preferences.has_completed_onboarding else 'no'}")
        if subscription:
            validity = "valid" if is_subscription_valid(subscription) else "expired"
            click.echo(f"  subscription: {subscription.product_name or subscription.price_id} ({subscription.status}, {validity})")
        else:
            click.echo("  subscription: none")
    finally:
        db.close()


@cli.command()
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (UUID)')
@click.option('-y', '--yes', 'confirm', is_flag=True, help='Skip confirmation')
def delete(email, user_id, confirm):
    """Soft-delete an account"""
    if not email and not user_id:
        click.echo("❌ Please provide --email or --id for this operation", err=True)
        return

    db = SessionLocal()
    try:
        user = _find_user(db, email, user_id)
        if not user:
            click.echo(f"❌ User not found: {user_id or email}", err=True)
            return

        if not confirm and not click.confirm(f"Soft-delete {_describe(user)}?", default=False):
            click.echo("Aborted")
            return

        AccountService().soft_delete(db, user.id)
        click.echo(f"✓ Deleted {_describe(user)}")
    except ValueError as e:
        click.echo(f"❌ {e}", err=True)
    except Exception as e:
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command()
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (UUID)')
def reactivate(email, user_id):
    """Reactivate a soft-deleted account"""
    if not email and not user_id:
        click.echo("❌ Please provide --email or --id for this operation", err=True)
        return

    db = SessionLocal()
    try:
        user = _find_user(db, email, user_id)
        if not user:
            click.echo(f"❌ User not found: {user_id or email}", err=True)
            return

        AccountService().reactivate(db, user.id)
        click.echo(f"✓ Reactivated {_describe(user)}")
    except ValueError as e:
        click.echo(f"❌ {e}", err=True)
    except Exception as e:
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command()
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (UUID)')
def subscriptions(email, user_id):
    """List every subscription row for an account, newest first"""
    if not email and not user_id:
        click.echo("❌ Please provide --email or --id for this operation", err=True)
        return

    db = SessionLocal()
    try:
        user = _find_user(db, email, user_id)
        if not user:
            click.echo(f"❌ User not found: {user_id or email}", err=True)
            return

        rows = sorted(user.subscriptions, key=lambda s: s.created_at, reverse=True)
        if not rows:
            click.echo(f"No subscriptions for {_describe(user)}")
            return

        click.echo(f"\nFound {len(rows)} subscriptions for {_describe(user)}:\n")
        for sub in rows:
            period_end = sub.current_period_end.isoformat() if sub.current_period_end else '-'
            click.echo(f"  - {sub.stripe_subscription_id}: {sub.status}, ends {period_end}, price {sub.price_id or '-'}")
    finally:
        db.close()


if __name__ == '__main__':
    cli()
