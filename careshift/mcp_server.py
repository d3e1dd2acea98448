"""careshift MCP server.

Exposes tools for snapshot upload, allocation dry runs and commits, shift
locking, manual overrides and the per-staff result table. All allocation
logic lives in care_allocation; this module only wires it to storage.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any

from mcp.server.fastmcp import FastMCP

from care_allocation.allocator import explain_assignment as _explain_assignment

from . import service
from . import storage
from .config import load_allocation_profiles, load_env, runtime_config

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "careshift",
    host=os.getenv("HOST", "127.0.0.1"),
    port=int(os.getenv("PORT", "8000")),
    instructions=(
        "Care-staff allocation engine. "
        "Assigns staff to facility tasks and patient care for a date and shift, "
        "respecting capacity, time collisions and two-staff tasks. "
        "Dry runs never write assignments; commits replace the stored shift."
    ),
)

_ENV_FILE: str | None = None


def _artifact_root():
    load_env(_ENV_FILE or os.getenv("CARESHIFT_ENV_FILE"))
    return runtime_config().artifact_root


def _default_profile() -> str:
    load_env(_ENV_FILE or os.getenv("CARESHIFT_ENV_FILE"))
    return runtime_config().default_profile


# -- Snapshots --

@mcp.tool()
def save_snapshot(snapshot_json: str) -> dict[str, Any]:
    """Store a facility snapshot (staff, overrides, global_tasks, patients, wards).

    Accepts the snapshot as a JSON string. The latest snapshot feeds dry runs.
    """
    return service.store_snapshot(_artifact_root(), json.loads(snapshot_json))


@mcp.tool()
def list_snapshots(limit: int = 20) -> list[dict[str, Any]]:
    """List stored snapshot manifests, newest first."""
    return storage.list_snapshots(_artifact_root(), limit=limit)


@mcp.tool()
def list_plans(limit: int = 20) -> list[dict[str, Any]]:
    """List stored dry-run plan manifests, newest first."""
    return storage.list_plans(_artifact_root(), limit=limit)


# -- Profiles --

@mcp.tool()
def list_profiles() -> dict[str, Any]:
    """List allocation profiles with their variant and policy overrides."""
    return {
        name: {
            "variant": profile.get("variant", "simple"),
            "description": profile.get("description", ""),
            "policy": profile.get("policy", {}),
        }
        for name, profile in load_allocation_profiles().items()
    }


# -- Allocation --

@mcp.tool()
def dry_run_allocation(
    date: str,
    shift: str,
    profile_name: str | None = None,
    snapshot_id: str | None = None,
) -> dict[str, Any]:
    """Run the allocation engine for a date and shift (AM/PM) without committing.

    Returns the plan with assignments, audit trace and metrics.
    """
    return service.dry_run(
        _artifact_root(),
        date,
        shift,
        profile_name=profile_name or _default_profile(),
        snapshot_id=snapshot_id,
    )


@mcp.tool()
def commit_allocation(
    date: str,
    shift: str,
    assignments_json: str | None = None,
    profile_name: str | None = None,
) -> dict[str, Any]:
    """Replace all stored assignments for the shift.

    Commits the given assignments (JSON list) or, when omitted, a fresh dry run.
    """
    assignments = json.loads(assignments_json) if assignments_json else None
    rows = service.commit(
        _artifact_root(),
        date,
        shift,
        assignments=assignments,
        profile_name=profile_name or _default_profile(),
    )
    return {"committed": len(rows), "assignments": rows}


@mcp.tool()
def reset_allocation(date: str, shift: str) -> dict[str, Any]:
    """Delete the stored assignments for the shift."""
    removed = service.reset(_artifact_root(), date, shift)
    return {"reset": removed}


@mcp.tool()
def shift_result_table(date: str, shift: str) -> list[dict[str, Any]]:
    """Committed assignments for the shift grouped per staff member with totals."""
    return service.result_table(_artifact_root(), date, shift)


@mcp.tool()
def manual_override(
    date: str,
    shift: str,
    assignment_id: str,
    new_staff_id: str,
    reason: str | None = None,
) -> dict[str, Any]:
    """Reassign one committed assignment to another staff member."""
    return service.manual_override(_artifact_root(), date, shift, assignment_id, new_staff_id, reason)


@mcp.tool()
def explain_assignment(assignment_id: str, plan_id: str | None = None) -> dict[str, Any]:
    """Explain one assignment of a stored plan, including fallback events."""
    plan = storage.load_plan(_artifact_root(), plan_id=plan_id)
    return _explain_assignment(plan, assignment_id)


# -- Shift locks --

@mcp.tool()
def lock_shift(date: str, shift: str, locked_by: str | None = None) -> dict[str, Any]:
    """Lock a shift so no allocation can run or be committed for it."""
    return service.lock_shift(_artifact_root(), date, shift, locked_by)


@mcp.tool()
def unlock_shift(date: str, shift: str) -> dict[str, Any]:
    """Remove the lock from a shift."""
    return {"unlocked": service.unlock_shift(_artifact_root(), date, shift)}


@mcp.tool()
def lock_status(date: str, shift: str) -> dict[str, Any]:
    """Report whether a shift is locked."""
    return service.lock_status(_artifact_root(), date, shift)


# -- Server entrypoints --

def _health(_request):
    from starlette.responses import JSONResponse

    root = runtime_config().artifact_root
    return JSONResponse({"status": "ok", "service": "careshift", "artifact_root_writable": os.access(root, os.W_OK)})


def _bearer_auth(api_key: str):
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import JSONResponse

    class BearerAuth(BaseHTTPMiddleware):
        async def dispatch(self, request, call_next):
            if request.url.path == "/health":
                return await call_next(request)
            if request.headers.get("authorization", "") != f"Bearer {api_key}":
                return JSONResponse({"error": "unauthorized"}, status_code=401)
            return await call_next(request)

    return BearerAuth


async def _run_http(log_level: str) -> None:
    import uvicorn
    from starlette.routing import Route

    app = mcp.streamable_http_app()
    api_key = os.getenv("MCP_API_KEY")
    if api_key:
        app.add_middleware(_bearer_auth(api_key))
    app.routes.append(Route("/health", _health))

    config = uvicorn.Config(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        log_level=log_level.lower(),
    )
    await uvicorn.Server(config).serve()


def resolve_transport(requested: str | None, port: str | None) -> str:
    """Explicit choice wins; otherwise a configured PORT means HTTP."""
    if requested:
        return requested
    return "streamable-http" if port else "stdio"


def main(argv: list[str] | None = None) -> None:
    global _ENV_FILE

    parser = argparse.ArgumentParser(description="Run the careshift allocation MCP server")
    parser.add_argument("--env-file", default=None, help="Path to .env file")
    parser.add_argument(
        "--transport",
        default=None,
        choices=["stdio", "sse", "streamable-http"],
        help="MCP transport (default: streamable-http when PORT is set, else stdio)",
    )
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    args = parser.parse_args(argv)
    _ENV_FILE = args.env_file
    load_env(_ENV_FILE or os.getenv("CARESHIFT_ENV_FILE"))

    log_level = (args.log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.info("careshift artifacts in %s", runtime_config().artifact_root)

    transport = resolve_transport(args.transport, os.getenv("PORT"))
    if transport == "streamable-http":
        import anyio

        anyio.run(_run_http, log_level)
    else:
        mcp.run(transport=transport)


if __name__ == "__main__":
    main()
