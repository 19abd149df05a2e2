from __future__ import annotations

from fastapi import Request

from app.jobs.queue import ProcessingQueue
from app.services.bulk import BulkMutator
from app.services.catalog import CatalogStore
from app.services.downloads import DownloadLinkIssuer
from app.services.ingestion import IngestionOrchestrator
from app.services.photos import PhotoEditor
from app.services.print_sizes import PrintSuitabilityResolver
from app.services.processing import ProcessingStateMachine
from app.services.query import QueryEngine
from app.services.storage import StorageGateway


def get_catalog(request: Request) -> CatalogStore:
    return request.app.state.catalog


def get_storage(request: Request) -> StorageGateway:
    return request.app.state.storage


def get_queue(request: Request) -> ProcessingQueue:
    return request.app.state.queue


def get_state_machine(request: Request) -> ProcessingStateMachine:
    return ProcessingStateMachine(get_catalog(request), get_queue(request))


def get_ingestion(request: Request) -> IngestionOrchestrator:
    return IngestionOrchestrator(get_catalog(request), get_storage(request), get_state_machine(request))


def get_query_engine(request: Request) -> QueryEngine:
    return QueryEngine(get_catalog(request))


def get_bulk_mutator(request: Request) -> BulkMutator:
    return BulkMutator(get_catalog(request))


def get_print_resolver(request: Request) -> PrintSuitabilityResolver:
    return PrintSuitabilityResolver(get_catalog(request))


def get_download_issuer(request: Request) -> DownloadLinkIssuer:
    return DownloadLinkIssuer(get_catalog(request), get_storage(request))


def get_photo_editor(request: Request) -> PhotoEditor:
    return PhotoEditor(get_catalog(request), get_storage(request))
