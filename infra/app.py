#!/usr/bin/env python3
"""
AuditLedger — CDK App Entry Point

Synthesizes one immutable audit-storage stack from a provisioning request.

Usage:
  1. Copy .env.example to .env at the repo root and fill in all values.
  2. Write the request JSON, e.g.
       {"bucket_name": "acme-audit-logs", "retention_days": 2555,
        "auditledger_role_arns": ["arn:aws:iam::123456789012:role/ingest"]}
  3. From the infra/ directory:
       AUDITLEDGER_REQUEST_FILE=request.json cdk synth
       AUDITLEDGER_REQUEST_FILE=request.json cdk deploy

Optional AUDITLEDGER_PRIOR_STATE_FILE holds the lock configuration of the
previous deployment ({"enabled", "mode", "retention_days"}) so illegal
changes fail at synth time instead of in CloudFormation.
"""
import json
import os
import sys

import aws_cdk as cdk
from dotenv import load_dotenv

# Load .env from repo root (one level up from infra/)
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env"))

# ---------------------------------------------------------------------------
# Resolve required configuration
# ---------------------------------------------------------------------------

def _require(key: str) -> str:
    val = os.environ.get(key, "")
    if not val:
        print(f"ERROR: Required environment variable '{key}' is not set.", file=sys.stderr)
        print("       Copy .env.example → .env and fill in all values.", file=sys.stderr)
        sys.exit(1)
    return val


def _load_json(path: str) -> dict:
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


AWS_ACCOUNT_ID = _require("AWS_ACCOUNT_ID")
AWS_REGION = _require("AWS_REGION")
REQUEST_FILE = _require("AUDITLEDGER_REQUEST_FILE")
PRIOR_STATE_FILE = os.environ.get("AUDITLEDGER_PRIOR_STATE_FILE", "")
ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")

env = cdk.Environment(account=AWS_ACCOUNT_ID, region=AWS_REGION)

# ---------------------------------------------------------------------------
# Import engine + stacks after env is validated to avoid import-time errors
# ---------------------------------------------------------------------------
from auditledger.core.errors import ProvisioningError
from auditledger.engine.pipeline import resolve_request
from auditledger.schemas.resources import LockConfiguration
from stacks.audit_storage_stack import AuditStorageStack

prior_state = (
    LockConfiguration.model_validate(_load_json(PRIOR_STATE_FILE)) if PRIOR_STATE_FILE else None
)

try:
    graph = resolve_request(_load_json(REQUEST_FILE), prior_state, strict=False)
except ProvisioningError as exc:
    print(f"ERROR: {type(exc).__name__}", file=sys.stderr)
    for v in exc.violations:
        print(f"       {v.field} [{v.rule}]: {v.message}", file=sys.stderr)
    sys.exit(1)

for warning in graph.warnings:
    print(f"WARNING: {warning.message}", file=sys.stderr)

app = cdk.App()

stack_id = "AuditLedger" + "".join(
    part.capitalize() for part in graph.request.name.replace(".", "-").split("-")
)
AuditStorageStack(app, stack_id, graph=graph, env=env)

cdk.Tags.of(app).add("Project", "auditledger")
cdk.Tags.of(app).add("Environment", ENVIRONMENT)

app.synth()
