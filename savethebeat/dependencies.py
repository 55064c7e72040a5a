"""
Service wiring and FastAPI dependency providers.

``build_services`` assembles the object graph once at startup and the
lifespan stores it on ``app.state.services``. Route handlers only ever ask
for the piece they need through the ``get_*`` providers, which tests replace
with ``app.dependency_overrides``.
"""

from dataclasses import dataclass

from fastapi import Depends, Request

from savethebeat.config import settings
from savethebeat.jobs.mention_worker import MentionWorker
from savethebeat.repositories.credential_repository import CredentialRepository
from savethebeat.repositories.save_action_repository import SaveActionRepository
from savethebeat.services.infrastructure.redis_client import FastRedisClient, fast_redis
from savethebeat.services.mention_pipeline import MentionPipeline
from savethebeat.services.oauth_state_service import OAuthStateStore
from savethebeat.services.slack.client import SlackClient
from savethebeat.services.spotify.client import SpotifyClient
from savethebeat.services.spotify.oauth_service import SpotifyOAuthService
from savethebeat.services.token_service import TokenService


@dataclass
class AppServices:
    slack: SlackClient
    spotify: SpotifyClient
    spotify_oauth: SpotifyOAuthService
    credentials: CredentialRepository
    save_actions: SaveActionRepository
    tokens: TokenService
    oauth_states: OAuthStateStore
    pipeline: MentionPipeline
    worker: MentionWorker


def build_services(redis_client: FastRedisClient = fast_redis) -> AppServices:
    slack = SlackClient()
    spotify = SpotifyClient()
    spotify_oauth = SpotifyOAuthService()
    credentials = CredentialRepository()
    save_actions = SaveActionRepository()
    tokens = TokenService(credentials, spotify_oauth)
    pipeline = MentionPipeline(
        slack=slack,
        spotify=spotify,
        tokens=tokens,
        save_actions=save_actions,
        base_url=settings.public_base_url(),
    )

    return AppServices(
        slack=slack,
        spotify=spotify,
        spotify_oauth=spotify_oauth,
        credentials=credentials,
        save_actions=save_actions,
        tokens=tokens,
        oauth_states=OAuthStateStore(redis_client),
        pipeline=pipeline,
        worker=MentionWorker(pipeline.run),
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_signing_secret() -> str | None:
    return settings.SLACK_SIGNING_SECRET


def get_mention_worker(services: AppServices = Depends(get_services)) -> MentionWorker:
    return services.worker


def get_oauth_state_store(services: AppServices = Depends(get_services)) -> OAuthStateStore:
    return services.oauth_states


def get_spotify_oauth_service(
    services: AppServices = Depends(get_services),
) -> SpotifyOAuthService:
    return services.spotify_oauth


def get_credential_repository(
    services: AppServices = Depends(get_services),
) -> CredentialRepository:
    return services.credentials


def get_token_service(services: AppServices = Depends(get_services)) -> TokenService:
    return services.tokens


def get_spotify_client(services: AppServices = Depends(get_services)) -> SpotifyClient:
    return services.spotify
