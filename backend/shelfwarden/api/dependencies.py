"""Providers for the engine collaborators stored on the application."""

from fastapi import Request

from shelfwarden.core.adapters import DeletionExecutor
from shelfwarden.core.scanner import ScanExecutor


def get_scan_executor(request: Request) -> ScanExecutor:
    return request.app.state.scan_executor


def get_deletion_executor(request: Request) -> DeletionExecutor:
    return request.app.state.deletion_executor
