"""
Main CLI interface for spotify-profile

This module provides the command-line interface for acquiring a Spotify
user's listening profile and managing the local state around it.

The CLI is built using Click framework and provides structured command groups for:
- Profile acquisition (fetch)
- Authentication handling (login, logout, status)
- Cached data management (show, clear)
- Configuration inspection (show)

Every failure ends the process with a status identifying its kind, see
``utils.exceptions`` for the mapping.
"""

import asyncio
import functools
import sys
from datetime import datetime

import click

from . import __version__
from .config.auth import AuthorizationFlowManager, TokenStore
from .config.settings import Settings, reload_settings
from .spotify.client import SpotifyClient, create_http_session
from .sync.cache import CacheStore, PROFILE, ARTISTS, TRACKS, PLAYLISTS
from .sync.pipeline import DataAcquisitionPipeline, ProfileSnapshot
from .utils.exceptions import CacheMiss, ConfigError, SpotifyProfileError
from .utils.logger import configure_from_settings, get_logger


logger = get_logger(__name__)


def handle_error(func):
    """
    Decorator to handle CLI errors gracefully

    Known failures exit with their own status and a one-line message;
    anything unexpected is logged with its traceback and exits with 1.

    Args:
        func: The CLI command function to wrap

    Returns:
        Wrapped function with error handling
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            click.echo(click.style("\n\nOperation cancelled by user", fg='yellow'), err=True)
            sys.exit(130)
        except SpotifyProfileError as e:
            logger.error(f"{func.__name__} failed: {e.__class__.__name__}: {e}")
            click.echo(click.style(f"Error: {e}", fg='red'), err=True)
            sys.exit(e.exit_code)
        except click.exceptions.Exit:
            raise
        except Exception as e:
            logger.exception(f"{func.__name__} failed unexpectedly: {e}")
            click.echo(click.style(f"Error: {e}", fg='red'), err=True)
            sys.exit(1)
    return wrapper


def prepare_settings(settings: Settings) -> Settings:
    """Validate settings for a run and clamp limits to provider maxima"""
    errors = settings.validate()
    if errors:
        raise ConfigError("Invalid configuration: " + "; ".join(errors), details={'errors': errors})

    for adjustment in settings.clamp_limits():
        logger.warning(f"Clamped {adjustment}")
    return settings


async def run_fetch(settings: Settings, refresh: bool = False) -> ProfileSnapshot:
    """
    Authorize and acquire the profile in one event loop

    The HTTP session is shared by the token exchange and every API call and
    is closed whatever the outcome.
    """
    async with create_http_session(settings.network.request_timeout, settings.network.user_agent) as http:
        manager = AuthorizationFlowManager.from_settings(settings, http)
        session = await manager.authenticate()

        pipeline = DataAcquisitionPipeline(
            SpotifyClient(session.access_token, http),
            CacheStore(settings.get_data_directory()),
            settings.fetch
        )
        return await pipeline.run(refresh=refresh)


async def run_login(settings: Settings):
    async with create_http_session(settings.network.request_timeout, settings.network.user_agent) as http:
        manager = AuthorizationFlowManager.from_settings(settings, http)
        session = await manager.authenticate()
        return await SpotifyClient(session.access_token, http).get_current_user()


def print_summary(snapshot: ProfileSnapshot, data_directory) -> None:
    profile = snapshot.profile
    click.echo(click.style(f"\nProfile: {profile.display_name} ({profile.id})", fg='green', bold=True))
    click.echo(f"   Source: {'cache' if snapshot.from_cache else 'live'}")
    click.echo(f"   Top artists: {len(snapshot.artists)}")
    click.echo(f"   Top tracks: {len(snapshot.tracks)}")

    with_tracks = sum(1 for playlist in snapshot.playlists if playlist.has_tracks)
    click.echo(f"   Playlists: {len(snapshot.playlists)} ({with_tracks} with tracks)")
    click.echo(f"   Data: {data_directory / profile.id}")

    if snapshot.partial_failures:
        click.echo(click.style(f"\n{len(snapshot.partial_failures)} playlist track fetches failed:", fg='yellow'))
        for failure in snapshot.partial_failures:
            click.echo(f"   • {failure.entity_id}: {failure.cause}")

    if snapshot.persistence_failures:
        click.echo(click.style(f"\n{len(snapshot.persistence_failures)} cache writes failed:", fg='yellow'))
        for failure in snapshot.persistence_failures:
            click.echo(f"   • {failure.entity_name}: {failure.cause}")


# Main CLI group - root command that all subcommands attach to
@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--config', type=click.Path(), help='Path to config file')
@click.pass_context
@handle_error
def cli(ctx, version, verbose, config):
    """
    spotify-profile - Fetch your Spotify listening profile

    Authorizes against the Spotify Web API and stores your profile, top
    artists, top tracks and playlists as JSON snapshots for offline use.
    """
    ctx.ensure_object(dict)

    if version:
        click.echo(f"spotify-profile v{__version__}")
        ctx.exit()

    settings = reload_settings(config)
    configure_from_settings(settings, verbose=verbose)

    ctx.obj['settings'] = settings
    ctx.obj['verbose'] = verbose
    if config:
        logger.info(f"Loaded config: {config}")

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option('--refresh', is_flag=True, help='Ignore cached data and fetch everything live')
@click.option('--code', help='Use this authorization code instead of opening a browser')
@click.option('--token', help='Use this access token and skip authorization')
@click.option('--no-browser', is_flag=True, help='Print the authorization URL without opening a browser')
@click.option('--no-playlists', is_flag=True, help='Skip playlists and their tracks')
@click.pass_context
@handle_error
def fetch(ctx, refresh, code, token, no_browser, no_playlists):
    """
    Fetch profile, top artists, top tracks and playlists

    Cached data for the user is reused unless --refresh is given. Playlists
    whose tracks could not be fetched are reported but do not fail the run.
    """
    settings = ctx.obj['settings']

    if code:
        settings.spotify.authorization_code = code
    if token:
        settings.spotify.access_token = token
    if no_browser:
        settings.spotify.open_browser = False
    if no_playlists:
        settings.fetch.include_playlists = False

    prepare_settings(settings)

    snapshot = asyncio.run(run_fetch(settings, refresh=refresh))
    print_summary(snapshot, settings.get_data_directory())


# Authentication commands
@cli.group()
def auth():
    """
    Authentication management

    Commands for authorizing against Spotify and managing the stored token.
    """
    pass


@auth.command()
@click.option('--no-browser', is_flag=True, help='Print the authorization URL without opening a browser')
@click.pass_context
@handle_error
def login(ctx, no_browser):
    """
    Authenticate with Spotify

    Reuses the stored token while it is valid; otherwise runs the browser
    flow and stores the new token for later runs.
    """
    settings = ctx.obj['settings']
    if no_browser:
        settings.spotify.open_browser = False
    prepare_settings(settings)

    click.echo("Starting Spotify authentication...")
    profile = asyncio.run(run_login(settings))
    click.echo(click.style(f"Authenticated as: {profile.display_name} ({profile.id})", fg='green'))


@auth.command()
@click.pass_context
@handle_error
def logout(ctx):
    """Remove the stored access token"""
    store = TokenStore(ctx.obj['settings'].get_token_storage_path())
    if store.delete():
        click.echo("Successfully logged out")
    else:
        click.echo("No stored token to remove")


@auth.command()
@click.pass_context
@handle_error
def status(ctx):
    """Show the stored token's status"""
    settings = ctx.obj['settings']
    store = TokenStore(settings.get_token_storage_path())
    token_data = store.load()

    if not token_data:
        click.echo(click.style("Not authenticated", fg='yellow'))
        click.echo("   Run 'spotify-profile auth login' to authenticate")
        return

    try:
        expires_at = f"{datetime.fromtimestamp(int(token_data['expires_at'])):%Y-%m-%d %H:%M:%S}"
    except (TypeError, ValueError):
        expires_at = "unknown"
    expired = expires_at == "unknown" or store.is_expired(token_data)
    click.echo(click.style("Stored token", fg='green') if not expired else click.style("Stored token (expired)", fg='yellow'))
    click.echo(f"   Expires: {expires_at}")
    click.echo(f"   Scope: {token_data.get('scope') or '-'}")
    click.echo(f"   Saved: {token_data.get('saved_at', '-')}")
    if token_data.get('client_id') != settings.spotify.client_id:
        click.echo(click.style("   Issued for a different client id; it will not be reused", fg='yellow'))


# Cached data commands
@cli.group()
def cache():
    """
    Cached data management

    Commands for inspecting and removing stored profile snapshots.
    """
    pass


@cache.command('show')
@click.argument('user_id', required=False)
@click.pass_context
@handle_error
def cache_show(ctx, user_id):
    """
    Show cached users, or the cached entities of USER_ID
    """
    settings = ctx.obj['settings']
    store = CacheStore(settings.get_data_directory())

    if not user_id:
        users = store.list_users()
        if not users:
            click.echo(f"No cached data in {store.data_root}")
            return
        click.echo(f"Cached users in {store.data_root}:")
        for cached_user in users:
            click.echo(f"   • {cached_user}")
        return

    click.echo(f"Cached data for {user_id}:")
    for entity in (PROFILE, ARTISTS, TRACKS, PLAYLISTS):
        try:
            value = store.read(user_id, entity)
        except CacheMiss:
            click.echo(f"   {entity}: -")
            continue
        if isinstance(value, list):
            click.echo(f"   {entity}: {len(value)} items")
        else:
            click.echo(f"   {entity}: {value.get('display_name', 'present') if isinstance(value, dict) else 'present'}")


@cache.command('clear')
@click.argument('user_id')
@click.pass_context
@handle_error
def cache_clear(ctx, user_id):
    """Remove every cached entity of USER_ID"""
    store = CacheStore(ctx.obj['settings'].get_data_directory())
    if store.clear(user_id):
        click.echo(f"Cleared cached data for {user_id}")
    else:
        click.echo(f"No cached data for {user_id}")


# Configuration commands
@cli.group()
def config():
    """
    Configuration management

    Commands for viewing the effective configuration.
    """
    pass


@config.command()
@click.pass_context
@handle_error
def show(ctx):
    """
    Show current configuration

    Secrets, codes and tokens are masked.
    """
    settings = ctx.obj['settings']

    click.echo("Current Configuration:")
    for section, values in settings.to_dict(redact=True).items():
        click.echo(f"\n{section.capitalize()}:")
        for key, value in values.items():
            click.echo(f"   {key}: {value}")
    click.echo(f"\nRedirect URI: {settings.spotify.redirect_uri}")
    click.echo(f"Scopes: {' '.join(settings.scopes)}")

    errors = settings.validate()
    if errors:
        click.echo(click.style(f"\nFound {len(errors)} issues:", fg='yellow'))
        for error in errors:
            click.echo(f"   • {error}")


# Entry point for module execution
if __name__ == '__main__':
    cli()
