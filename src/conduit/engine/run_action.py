"""
Run action: the unit of work a scheduler or API call invokes to execute one
synchronization and report what happened.

The action never raises. Every outcome, including invalid arguments and
failed runs, is returned as a finished ``RunTrace``.
"""

import logging
import threading
from typing import Dict, Any, Optional, Tuple

from ..models.definition import SynchronizationDefinition
from ..models.job_log import JobLog, LogLevel, RunTrace, TraceRecorder
from ..services.store import SynchronizationStore
from .sync import SynchronizationService

logger = logging.getLogger(__name__)


class SynchronizationAction:
    """
    Executes a synchronization described by job arguments.

    Recognized arguments:
        synchronizationId: Id of the synchronization to run (required)
        synchronizationContractId: Restrict the run to the object of one contract
        dryRun: Fetch and map without writing anything

    Args:
        store: Store holding synchronization definitions and job logs
        service: Orchestrator used to run the synchronization
    """

    JOB_CLASS = "conduit.engine.run_action.SynchronizationAction"

    def __init__(self, store: SynchronizationStore, service: Optional[SynchronizationService] = None):
        self.store = store
        self.service = service or SynchronizationService(store)

    def run(self, arguments: Optional[Dict[str, Any]], cancel_event: Optional[threading.Event] = None) -> RunTrace:
        """
        Run the synchronization named in ``arguments``.

        Returns:
            The finished trace of the run
        """
        arguments = dict(arguments or {})
        recorder = TraceRecorder(arguments)
        try:
            return self._run(recorder, arguments, cancel_event)
        except Exception as e:
            logger.exception(f"Synchronization run failed unexpectedly: {e}")
            return recorder.finish(LogLevel.ERROR, f"Failed to synchronize: {e}")

    def run_and_record(
        self,
        arguments: Optional[Dict[str, Any]],
        cancel_event: Optional[threading.Event] = None
    ) -> Tuple[RunTrace, JobLog]:
        """
        Run a synchronization and persist its trace as a job log.

        The definition's ``last_run`` is stamped when it exists.

        Returns:
            Tuple of (trace, stored job log)
        """
        trace = self.run(arguments, cancel_event)
        synchronization_id = self._parse_id(trace.arguments.get("synchronizationId"))

        job_log = self.store.create_job_log(JobLog.from_trace(
            trace,
            job_class=self.JOB_CLASS,
            synchronization_id=synchronization_id
        ))
        if synchronization_id is not None:
            self.store.record_last_run(synchronization_id, trace.started_at)
        return trace, job_log

    def _run(
        self,
        recorder: TraceRecorder,
        arguments: Dict[str, Any],
        cancel_event: Optional[threading.Event]
    ) -> RunTrace:
        recorder.step("Check for a valid synchronization ID")
        raw_id = arguments.get("synchronizationId")
        if raw_id is None or raw_id == "":
            return recorder.finish(LogLevel.ERROR, "No synchronization ID provided")

        recorder.step(f"Getting synchronization: {raw_id}")
        synchronization_id = self._parse_id(raw_id)
        definition: Optional[SynchronizationDefinition] = None
        if synchronization_id is not None:
            definition = self.store.get_definition(synchronization_id)
        if definition is None:
            return recorder.finish(LogLevel.WARNING, f"Synchronization not found: {raw_id}")

        origin_filter = None
        contract_id = arguments.get("synchronizationContractId")
        if contract_id:
            recorder.step(f"Getting synchronization contract: {contract_id}")
            contract = self.service.contracts.get(str(contract_id))
            if contract is None or contract.synchronization_id != definition.id:
                return recorder.finish(LogLevel.WARNING, f"Synchronization contract not found: {contract_id}")
            origin_filter = contract.origin_id

        dry_run = bool(arguments.get("dryRun", False))

        recorder.step("Doing the synchronization")
        try:
            outcome = self.service.synchronize(
                definition,
                cancel_event=cancel_event,
                dry_run=dry_run,
                origin_filter=origin_filter
            )
        except Exception as e:
            logger.error(f"Synchronization {definition.id} failed: {e}")
            return recorder.finish(LogLevel.ERROR, f"Failed to synchronize: {e}")

        for origin_id, error in outcome.failures:
            recorder.failure(origin_id, error)
        recorder.objects_synchronized = len(outcome.objects)

        if definition.target_config.delete_old_targets:
            if dry_run or outcome.cancelled or origin_filter is not None:
                recorder.step("Skipping deletion of old targets for an incomplete run")
            else:
                recorder.step("Checking for targets to delete that no longer exist in the source")
                try:
                    deleted = self.service.delete_old_targets(definition, outcome.origin_ids)
                except Exception as e:
                    logger.error(f"Deleting old targets of synchronization {definition.id} failed: {e}")
                    return recorder.finish(LogLevel.ERROR, f"Failed to delete targets: {e}")
                recorder.targets_deleted = deleted
                recorder.step(f"Deleted {deleted} targets that no longer exist in the source")

        if outcome.cancelled:
            return recorder.finish(
                LogLevel.WARNING,
                f"Synchronization cancelled after {len(outcome.objects)} objects"
            )
        return recorder.finish(LogLevel.INFO, f"Synchronized {len(outcome.objects)} successfully")

    @staticmethod
    def _parse_id(raw_id: Any) -> Optional[int]:
        try:
            return int(raw_id)
        except (TypeError, ValueError):
            return None
