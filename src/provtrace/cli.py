"""Typer CLI entrypoint for provtrace."""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import typer

from .compliance import (
    build_compliance_report,
    check_submission,
    find_violations,
    recheck_compliance,
)
from .config import ConfigBundle, load_config_bundle
from .exceptions import ConfigError, ConflictError, NotFoundError, ProvtraceError
from .ledger import (
    LedgerClient,
    LedgerMirror,
    build_ledger,
    ledger_status,
    resync_pending,
    verify_record,
)
from .lifecycle.manager import RecordLifecycleManager
from .queries import (
    batch_stats,
    harvest_stats,
    lab_stats,
    list_batches,
    list_harvests,
    list_lab_tests,
    pending_lab_tests,
)
from .records import RecordValidationError, batch_to_dict, harvest_to_dict
from .records.models import HarvesterDetails, ProcessorDetails
from .records.serialization import lab_test_to_dict, step_to_dict
from .storage import RecordStore


EXIT_SUCCESS = 0
EXIT_VALIDATION_ERROR = 2
EXIT_NOT_FOUND = 3
EXIT_IO_ERROR = 4
EXIT_CONFIG_ERROR = 5
EXIT_CONFLICT = 6

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%S%z"]


app = typer.Typer(help="Botanical supply-chain provenance engine")
harvest_app = typer.Typer(help="Harvest sample commands")
batch_app = typer.Typer(help="Batch and processing-step commands")
lab_app = typer.Typer(help="Lab test commands")
compliance_app = typer.Typer(help="Compliance checks and reports")
ledger_app = typer.Typer(help="Ledger mirror maintenance")
app.add_typer(harvest_app, name="harvest")
app.add_typer(batch_app, name="batch")
app.add_typer(lab_app, name="lab")
app.add_typer(compliance_app, name="compliance")
app.add_typer(ledger_app, name="ledger")


CONFIG_OPTION = typer.Option(
    Path("config"),
    "--config",
    "-c",
    help="Path to configuration directory",
)
WORKSPACE_OPTION = typer.Option(
    Path(".provtrace"),
    "--workspace",
    "-w",
    help="Directory for record and ledger state",
)
ACTOR_OPTION = typer.Option(None, "--actor", help="Name of the person recording the event")
ORGANIZATION_OPTION = typer.Option(None, "--organization", help="Organization of the actor")


@dataclass
class Session:
    config: ConfigBundle
    store: RecordStore
    ledger: LedgerClient
    manager: RecordLifecycleManager


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress to stderr"),
) -> None:
    """Record harvests, batches and lab results and query their provenance."""

    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except ConfigError as exc:
        typer.echo(f"Config error: {exc}", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR) from exc
    except RecordValidationError as exc:
        typer.echo(f"Validation error: {exc}", err=True)
        raise typer.Exit(EXIT_VALIDATION_ERROR) from exc
    except NotFoundError as exc:
        typer.echo(f"Not found: {exc}", err=True)
        raise typer.Exit(EXIT_NOT_FOUND) from exc
    except ConflictError as exc:
        typer.echo(f"Conflict: {exc}", err=True)
        raise typer.Exit(EXIT_CONFLICT) from exc
    except ValueError as exc:
        typer.echo(f"Invalid option: {exc}", err=True)
        raise typer.Exit(EXIT_VALIDATION_ERROR) from exc
    except OSError as exc:
        typer.echo(f"I/O error: {exc}", err=True)
        raise typer.Exit(EXIT_IO_ERROR) from exc
    except ProvtraceError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(EXIT_IO_ERROR) from exc


@contextmanager
def _session(config_dir: Path, workspace: Path) -> Iterator[Session]:
    """Open the store and ledger; leaving the block waits for ledger syncs."""

    bundle = load_config_bundle(config_dir)
    workspace = Path(workspace)
    workspace.mkdir(parents=True, exist_ok=True)
    store = RecordStore(workspace / "records")
    ledger = build_ledger(bundle.ledger, workspace)
    try:
        with LedgerMirror(store, ledger, workers=bundle.ledger.workers) as mirror:
            manager = RecordLifecycleManager(store, bundle.compliance, mirror=mirror)
            yield Session(config=bundle, store=store, ledger=ledger, manager=manager)
    finally:
        ledger.close()


def _read_payload(path: Path) -> Dict[str, Any]:
    text = sys.stdin.read() if str(path) == "-" else Path(path).read_text(encoding="utf-8")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise RecordValidationError("payload", f"invalid JSON: {exc}") from exc


def _emit(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2))


# ----------------------------------------------------------------------
# harvest
@harvest_app.command("submit")
def harvest_submit(
    payload_path: Path = typer.Argument(..., help="Harvest submission JSON ('-' for stdin)"),
    actor: Optional[str] = ACTOR_OPTION,
    organization: Optional[str] = ORGANIZATION_OPTION,
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Record a harvest and compute its compliance."""

    with _handle_errors():
        payload = _read_payload(payload_path)
        harvester = None
        if actor or organization:
            details = (payload.get("harvesterDetails") if isinstance(payload, dict) else None) or {}
            harvester = HarvesterDetails(
                name=actor or details.get("name"),
                phone=details.get("phone"),
                organization=organization or details.get("organization"),
            )
        with _session(config_dir, workspace) as session:
            harvest = session.manager.submit_harvest(payload, harvester)
        harvest = session.store.get_harvest(harvest.sample_id)
    _emit(harvest_to_dict(harvest))


@harvest_app.command("show")
def harvest_show(
    sample_id: str = typer.Argument(...),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    with _handle_errors():
        with _session(config_dir, workspace) as session:
            harvest = session.manager.get_harvest(sample_id)
    _emit(harvest_to_dict(harvest))


@harvest_app.command("update")
def harvest_update(
    sample_id: str = typer.Argument(...),
    payload_path: Path = typer.Argument(..., help="Fields to change as JSON ('-' for stdin)"),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Edit a harvest that has not left collection yet."""

    with _handle_errors():
        payload = _read_payload(payload_path)
        with _session(config_dir, workspace) as session:
            harvest = session.manager.update_harvest(sample_id, payload)
    _emit(harvest_to_dict(harvest))


@harvest_app.command("transition")
def harvest_transition(
    sample_id: str = typer.Argument(...),
    event: str = typer.Argument(..., help="dispatch, receive or reject"),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    with _handle_errors():
        with _session(config_dir, workspace) as session:
            harvest = session.manager.transition_harvest(sample_id, event)
    _emit({"sampleId": harvest.sample_id, "status": harvest.status.value})


@harvest_app.command("provenance")
def harvest_provenance(
    sample_id: str = typer.Argument(...),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Print the public provenance trail of a sample."""

    with _handle_errors():
        with _session(config_dir, workspace) as session:
            trail = session.manager.harvest_provenance(sample_id)
    _emit(trail)


@harvest_app.command("list")
def harvest_list(
    species: Optional[str] = typer.Option(None, "--species", help="Species name fragment"),
    method: Optional[str] = typer.Option(None, "--method", help="wild_collection, cultivated or semi_wild"),
    status: Optional[str] = typer.Option(None, "--status"),
    geofence: Optional[str] = typer.Option(None, "--geofence", help="Geofence status"),
    seasonal: Optional[str] = typer.Option(None, "--seasonal", help="Seasonal status"),
    start: Optional[datetime] = typer.Option(None, "--start", formats=DATE_FORMATS),
    end: Optional[datetime] = typer.Option(None, "--end", formats=DATE_FORMATS),
    lat: Optional[float] = typer.Option(None, "--lat"),
    lng: Optional[float] = typer.Option(None, "--lng"),
    radius: Optional[float] = typer.Option(None, "--radius", help="Search radius in km around --lat/--lng"),
    page: int = typer.Option(1, "--page", min=1),
    limit: int = typer.Option(10, "--limit", min=1),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """List harvests, newest first."""

    with _handle_errors():
        near = None
        given = [value is not None for value in (lat, lng, radius)]
        if any(given):
            if not all(given):
                raise ValueError("--lat, --lng and --radius must be given together")
            near = (lat, lng, radius)
        with _session(config_dir, workspace) as session:
            result = list_harvests(
                session.store.list_harvests(),
                species=species,
                harvest_method=method,
                status=status,
                geofence_status=geofence,
                seasonal_status=seasonal,
                start=start,
                end=end,
                near=near,
                page=page,
                limit=limit,
            )
    _emit(result)


@harvest_app.command("stats")
def harvest_stats_command(
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    with _handle_errors():
        with _session(config_dir, workspace) as session:
            result = harvest_stats(session.store.list_harvests())
    _emit(result)


# ----------------------------------------------------------------------
# batch
@batch_app.command("create")
def batch_create(
    payload_path: Path = typer.Argument(..., help="Batch submission JSON ('-' for stdin)"),
    actor: Optional[str] = ACTOR_OPTION,
    organization: Optional[str] = ORGANIZATION_OPTION,
    license_number: Optional[str] = typer.Option(None, "--license", help="Processor license number"),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Combine harvest samples into a new batch."""

    with _handle_errors():
        payload = _read_payload(payload_path)
        processor = ProcessorDetails(
            name=actor, organization=organization, license_number=license_number
        )
        with _session(config_dir, workspace) as session:
            batch = session.manager.create_batch(payload, processor)
        batch = session.store.get_batch(batch.batch_id)
    _emit(batch_to_dict(batch))


@batch_app.command("show")
def batch_show(
    batch_id: str = typer.Argument(...),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    with _handle_errors():
        with _session(config_dir, workspace) as session:
            batch = session.manager.get_batch(batch_id)
    _emit(batch_to_dict(batch))


@batch_app.command("step-add")
def batch_step_add(
    batch_id: str = typer.Argument(...),
    payload_path: Path = typer.Argument(..., help="Processing step JSON ('-' for stdin)"),
    actor: Optional[str] = ACTOR_OPTION,
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Start a processing step on a batch."""

    with _handle_errors():
        payload = _read_payload(payload_path)
        with _session(config_dir, workspace) as session:
            step = session.manager.add_processing_step(batch_id, payload, actor)
        batch = session.store.get_batch(batch_id)
    _emit(
        {
            "step": step_to_dict(batch.find_step(step.step_id) or step),
            "batchStatus": batch.status.value,
            "qualityGrade": batch.quality_grade.value,
        }
    )


@batch_app.command("step-update")
def batch_step_update(
    batch_id: str = typer.Argument(...),
    step_id: str = typer.Argument(...),
    payload_path: Path = typer.Argument(..., help="Step changes as JSON ('-' for stdin)"),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    with _handle_errors():
        payload = _read_payload(payload_path)
        with _session(config_dir, workspace) as session:
            step = session.manager.update_processing_step(batch_id, step_id, payload)
    _emit(step_to_dict(step))


@batch_app.command("step-complete")
def batch_step_complete(
    batch_id: str = typer.Argument(...),
    step_id: str = typer.Argument(...),
    payload_path: Optional[Path] = typer.Option(
        None,
        "--payload",
        "-p",
        help="Optional JSON with status, qualityMetrics and notes",
    ),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Close an in-progress processing step."""

    with _handle_errors():
        payload = _read_payload(payload_path) if payload_path is not None else {}
        with _session(config_dir, workspace) as session:
            step = session.manager.complete_processing_step(batch_id, step_id, payload)
            batch = session.store.get_batch(batch_id)
    _emit(
        {
            "step": step_to_dict(step),
            "qualityGrade": batch.quality_grade.value,
            "qualityScore": batch.quality_score,
        }
    )


@batch_app.command("transition")
def batch_transition(
    batch_id: str = typer.Argument(...),
    event: str = typer.Argument(
        ..., help="start_processing, start_testing, approve, reject, ship or deliver"
    ),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    with _handle_errors():
        with _session(config_dir, workspace) as session:
            batch = session.manager.transition_batch(batch_id, event)
    _emit({"batchId": batch.batch_id, "status": batch.status.value})


@batch_app.command("provenance")
def batch_provenance(
    batch_id: str = typer.Argument(...),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Print the public provenance trail of a batch."""

    with _handle_errors():
        with _session(config_dir, workspace) as session:
            trail = session.manager.batch_provenance(batch_id)
    _emit(trail)


@batch_app.command("list")
def batch_list(
    species: Optional[str] = typer.Option(None, "--species", help="Species name fragment"),
    status: Optional[str] = typer.Option(None, "--status"),
    destination: Optional[str] = typer.Option(None, "--destination"),
    grade: Optional[str] = typer.Option(None, "--grade", help="Quality grade"),
    start: Optional[datetime] = typer.Option(None, "--start", formats=DATE_FORMATS),
    end: Optional[datetime] = typer.Option(None, "--end", formats=DATE_FORMATS),
    page: int = typer.Option(1, "--page", min=1),
    limit: int = typer.Option(10, "--limit", min=1),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """List batches, newest first."""

    with _handle_errors():
        with _session(config_dir, workspace) as session:
            result = list_batches(
                session.store.list_batches(),
                species=species,
                status=status,
                destination=destination,
                quality_grade=grade,
                start=start,
                end=end,
                page=page,
                limit=limit,
            )
    _emit(result)


@batch_app.command("stats")
def batch_stats_command(
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    with _handle_errors():
        with _session(config_dir, workspace) as session:
            result = batch_stats(session.store.list_batches())
    _emit(result)


# ----------------------------------------------------------------------
# lab
@lab_app.command("add")
def lab_add(
    payload_path: Path = typer.Argument(..., help="Lab test JSON ('-' for stdin)"),
    actor: Optional[str] = ACTOR_OPTION,
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Attach a lab test result to a batch."""

    with _handle_errors():
        payload = _read_payload(payload_path)
        with _session(config_dir, workspace) as session:
            test = session.manager.add_lab_test(payload, actor)
        batch = session.store.find_batch_by_test_id(test.test_id)
    _emit(
        {
            "test": lab_test_to_dict(batch.find_test(test.test_id)),
            "batch": {
                "batchId": batch.batch_id,
                "status": batch.status.value,
                "qualityGrade": batch.quality_grade.value,
                "qualityScore": batch.quality_score,
            },
        }
    )


@lab_app.command("update")
def lab_update(
    test_id: str = typer.Argument(...),
    payload_path: Path = typer.Argument(..., help="Result changes as JSON ('-' for stdin)"),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Update a pending lab test; finalized results are immutable."""

    with _handle_errors():
        payload = _read_payload(payload_path)
        with _session(config_dir, workspace) as session:
            test, batch = session.manager.update_lab_test(test_id, payload)
    _emit(
        {
            "test": lab_test_to_dict(test),
            "qualityGrade": batch.quality_grade.value,
            "qualityScore": batch.quality_score,
        }
    )


@lab_app.command("show")
def lab_show(
    test_id: str = typer.Argument(...),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    with _handle_errors():
        with _session(config_dir, workspace) as session:
            test, batch = session.manager.get_lab_test(test_id)
    _emit({**lab_test_to_dict(test), "batchId": batch.batch_id, "species": batch.species})


@lab_app.command("list")
def lab_list(
    test_type: Optional[str] = typer.Option(None, "--type", help="Test type"),
    status: Optional[str] = typer.Option(None, "--status", help="PASS, FAIL, PENDING or RETEST"),
    batch_id: Optional[str] = typer.Option(None, "--batch"),
    start: Optional[datetime] = typer.Option(None, "--start", formats=DATE_FORMATS),
    end: Optional[datetime] = typer.Option(None, "--end", formats=DATE_FORMATS),
    page: int = typer.Option(1, "--page", min=1),
    limit: int = typer.Option(10, "--limit", min=1),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """List lab tests across batches, most recent first."""

    with _handle_errors():
        with _session(config_dir, workspace) as session:
            result = list_lab_tests(
                session.store.list_batches(),
                test_type=test_type,
                status=status,
                batch_id=batch_id,
                start=start,
                end=end,
                page=page,
                limit=limit,
            )
    _emit(result)


@lab_app.command("pending")
def lab_pending(
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Batches waiting on a pending lab result."""

    with _handle_errors():
        with _session(config_dir, workspace) as session:
            result = pending_lab_tests(session.store.list_batches())
    _emit(result)


@lab_app.command("stats")
def lab_stats_command(
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    with _handle_errors():
        with _session(config_dir, workspace) as session:
            result = lab_stats(session.store.list_batches())
    _emit(result)


# ----------------------------------------------------------------------
# compliance
@compliance_app.command("check")
def compliance_check(
    payload_path: Path = typer.Argument(..., help="Species, location and harvestDate as JSON"),
    config_dir: Path = CONFIG_OPTION,
) -> None:
    """Check an unsaved harvest against the compliance rules."""

    with _handle_errors():
        payload = _read_payload(payload_path)
        bundle = load_config_bundle(config_dir)
        result = check_submission(payload, bundle.compliance)
    _emit(result)


@compliance_app.command("recheck")
def compliance_recheck(
    sample_ids: List[str] = typer.Argument(..., help="Sample ids to re-verify"),
    persist: bool = typer.Option(False, "--persist", help="Write recomputed values back"),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    with _handle_errors():
        with _session(config_dir, workspace) as session:
            result = recheck_compliance(
                session.store, sample_ids, session.config.compliance, persist=persist
            )
    _emit(result)


@compliance_app.command("report")
def compliance_report(
    start: Optional[datetime] = typer.Option(None, "--start", formats=DATE_FORMATS),
    end: Optional[datetime] = typer.Option(None, "--end", formats=DATE_FORMATS),
    species: Optional[str] = typer.Option(None, "--species", help="Species name fragment"),
    region: Optional[str] = typer.Option(None, "--region", help="State name fragment"),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Summarize compliance across stored harvests."""

    with _handle_errors():
        with _session(config_dir, workspace) as session:
            report = build_compliance_report(
                session.store.list_harvests(),
                session.config.compliance,
                start=start,
                end=end,
                species=species,
                region=region,
            )
    _emit(report)


@compliance_app.command("violations")
def compliance_violations(
    violation_type: str = typer.Option("all", "--type", help="all, geofence, seasonal or sustainability"),
    severity: str = typer.Option("all", "--severity", help="all, high, medium or low"),
    page: int = typer.Option(1, "--page", min=1),
    limit: int = typer.Option(20, "--limit", min=1),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    with _handle_errors():
        with _session(config_dir, workspace) as session:
            result = find_violations(
                session.store.list_harvests(),
                violation_type=violation_type,
                severity=severity,
                page=page,
                limit=limit,
            )
    _emit(result)


# ----------------------------------------------------------------------
# ledger
@ledger_app.command("sync")
def ledger_sync(
    kind: str = typer.Option("all", "--kind", help="all, harvest or batch"),
    limit: int = typer.Option(50, "--limit", min=1),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Re-submit records whose ledger sync is pending or failed."""

    with _handle_errors():
        with _session(config_dir, workspace) as session:
            result = resync_pending(session.store, session.ledger, kind=kind, limit=limit)
    _emit(result)


@ledger_app.command("verify")
def ledger_verify(
    kind: str = typer.Argument(..., help="harvest or batch"),
    record_id: str = typer.Argument(...),
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Compare a stored record with its ledger copy."""

    with _handle_errors():
        with _session(config_dir, workspace) as session:
            result = verify_record(session.store, session.ledger, kind, record_id)
    _emit(result)


@ledger_app.command("status")
def ledger_status_command(
    config_dir: Path = CONFIG_OPTION,
    workspace: Path = WORKSPACE_OPTION,
) -> None:
    """Show the ledger mode, journal chain health and sync coverage."""

    with _handle_errors():
        with _session(config_dir, workspace) as session:
            result = ledger_status(session.store, session.ledger)
    _emit(result)
