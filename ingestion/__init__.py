"""
Catalog sync pipeline components.

This package contains everything one sync run touches:

Modules:
    runner: SyncOrchestrator, coordinates fetch, reconcile, cleanup and images
    reconciler: Per-record state machine (absent / published / archived)
    cleanup: CleanupVerifier, re-verifies vehicles the run did not confirm
    tracker: ValidSetTracker, run-scoped set of confirmed external ids
    run_log: Best-effort SyncRun audit rows
    scheduler: APScheduler integration for periodic incremental syncs

Subpackages:
    extractors: CatalogClient (paged fetch and point lookups)
    transformers: VehicleFilter, fingerprint, VehicleNormalizer
    loaders: VehicleStore data access and the ImagePipeline

Architecture:
    Catalog Client -> Reconciler (filter + fingerprint + store) ->
    Valid-Set Tracker -> Cleanup Verifier -> Image Pipeline -> summary

    Only local store unavailability escapes a run; page failures, record
    failures and image failures are counted on the summary.

Usage:
    from core.database import async_session_maker
    from ingestion.runner import SyncOrchestrator
    from models.base import SyncType

Example:
    async with async_session_maker() as session:
        summary = await SyncOrchestrator(session).run(SyncType.INCREMENTAL)

    print(f"Created {summary.reconcile.created} vehicles")
"""

__all__ = [
    "SyncOrchestrator",
    "Reconciler",
    "CleanupVerifier",
    "ValidSetTracker",
    "SyncRunLog",
    "SyncScheduler",
    "CatalogClient",
    "VehicleFilter",
    "VehicleNormalizer",
    "VehicleStore",
    "ImagePipeline",
]
