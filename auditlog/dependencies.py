"""
FastAPI dependencies resolving the per-application service container.
"""

from fastapi import Request

from auditlog.config import Settings
from auditlog.container import ServiceContainer
from auditlog.services.config_store import ConfigProvider
from auditlog.services.query import QueryEngine
from auditlog.services.store import EventStore
from auditlog.services.sweeper import RetentionSweeper
from auditlog.services.writer import EventWriter


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_store(request: Request) -> EventStore:
    return get_container(request).store


def get_writer(request: Request) -> EventWriter:
    return get_container(request).writer


def get_query_engine(request: Request) -> QueryEngine:
    return get_container(request).query_engine


def get_config_provider(request: Request) -> ConfigProvider:
    return get_container(request).config


def get_sweeper(request: Request) -> RetentionSweeper:
    return get_container(request).sweeper
