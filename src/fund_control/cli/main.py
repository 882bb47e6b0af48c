"""
Fund Control CLI

Command-line interface for the approval workflow engine and fund-control
ledger. Provides commands for appropriations, workflows, budgets,
approvals and spending.

Usage:
    fund-control init --db funds.db
    fund-control appropriation create --code O&M-2025 --name "Operations" --fiscal-year 2025 --amount 1000000
    fund-control workflow create --name "Budget review" --entity-type budget --step 1:budget_officer --step 2:cfo
    fund-control budget create --fiscal-year 2025 --title "Fleet" --amount 600000 --by alice --appropriation O&M-2025
    fund-control budget submit --id <budget_id> --by alice
    fund-control approval pending --approver carol --role cfo
    fund-control approval decide --request <request_id> --decision approve --approver carol --role cfo
"""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from fund_control.control import FundControl
from fund_control.kernel.errors import FundControlError
from fund_control.kernel.logging import configure_logging
from fund_control.kernel.money import format_cents
from fund_control.kernel.policy import ControlPolicy

# Configure logging to stderr (avoids polluting stdout for JSON output)
configure_logging(json_output=False, log_level="WARNING")

app = typer.Typer(
    name="fund-control",
    help="Fund Control - Approval workflows and anti-deficiency fund control",
    add_completion=False,
)

# Sub-apps
appropriation_app = typer.Typer(help="Appropriation ledger commands")
workflow_app = typer.Typer(help="Approval workflow definition commands")
budget_app = typer.Typer(help="Budget lifecycle commands")
approval_app = typer.Typer(help="Approval request commands")
obligation_app = typer.Typer(help="Obligation commands")
expenditure_app = typer.Typer(help="Expenditure commands")
variance_app = typer.Typer(help="Variance analysis commands")

app.add_typer(appropriation_app, name="appropriation")
app.add_typer(workflow_app, name="workflow")
app.add_typer(budget_app, name="budget")
app.add_typer(approval_app, name="approval")
app.add_typer(obligation_app, name="obligation")
app.add_typer(expenditure_app, name="expenditure")
app.add_typer(variance_app, name="variance")

# Global state
DEFAULT_DB = Path(".fund_control.db")

DbOption = Annotated[Optional[Path], typer.Option("--db", help="Database path")]


def get_control(db_path: Optional[Path] = None) -> FundControl:
    """Get FundControl instance (policy overrides from FUND_CONTROL_* variables)"""
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'fund-control init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return FundControl(str(db), policy=ControlPolicy())


@contextmanager
def reported_errors() -> Iterator[None]:
    """Render domain and input errors as 'Error: ...' with exit code 1"""
    try:
        yield
    except (FundControlError, ValueError, TypeError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e


def parse_amount(value: str) -> Decimal:
    try:
        return Decimal(value.replace(",", ""))
    except InvalidOperation as e:
        raise ValueError(f"Not a currency amount: {value!r}") from e


def parse_step(spec: str) -> dict[str, Any]:
    """
    Parse ORDER:ROLE[:APPROVER[:AUTO_APPROVE_THRESHOLD]]

    Example:
        >>> parse_step("2:cfo::5000")
        {'order': 2, 'required_role': 'cfo', 'approver_id': None, 'auto_approve_threshold': Decimal('5000')}
    """
    parts = spec.split(":")
    if len(parts) < 2 or len(parts) > 4:
        raise ValueError(f"Step must be ORDER:ROLE[:APPROVER[:THRESHOLD]], got {spec!r}")
    return {
        "order": int(parts[0]),
        "required_role": parts[1],
        "approver_id": parts[2] if len(parts) > 2 and parts[2] else None,
        "auto_approve_threshold": parse_amount(parts[3]) if len(parts) > 3 and parts[3] else None,
    }


def echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option(help="Database path"),
    ] = DEFAULT_DB,
) -> None:
    """Initialize a new Fund Control database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    # Create database by initializing the engine
    FundControl(str(db))
    typer.echo(f"✓ Initialized Fund Control database: {db}")


# Appropriation commands


@appropriation_app.command("create")
def appropriation_create(
    code: Annotated[str, typer.Option("--code", help="Appropriation code")],
    name: Annotated[str, typer.Option("--name", help="Appropriation name")],
    fiscal_year: Annotated[int, typer.Option("--fiscal-year", help="Fiscal year")],
    amount: Annotated[str, typer.Option("--amount", help="Enacted total")],
    appropriation_type: Annotated[
        str,
        typer.Option("--type", help="annual, multi_year or no_year"),
    ] = "annual",
    availability_years: Annotated[
        Optional[int],
        typer.Option("--years", help="Availability years (multi_year only)"),
    ] = None,
    restriction: Annotated[
        Optional[list[str]],
        typer.Option("--restriction", help="Purpose tag (repeatable)"),
    ] = None,
    db: DbOption = None,
) -> None:
    """Create an appropriation"""
    fc = get_control(db)

    with reported_errors():
        appropriation = fc.create_appropriation(
            code=code,
            name=name,
            fiscal_year=fiscal_year,
            amount=parse_amount(amount),
            appropriation_type=appropriation_type,
            restrictions=restriction or [],
            availability_years=availability_years,
        )

    typer.echo(f"✓ Created appropriation: {appropriation['appropriation_id']}")
    typer.echo(f"  Code: {appropriation['code']} (FY{appropriation['fiscal_year']})")
    typer.echo(f"  Total: ${format_cents(appropriation['total_cents'])}")
    typer.echo(f"  Expires: {appropriation['expiration_date'] or 'never'}")


@appropriation_app.command("show")
def appropriation_show(
    code: Annotated[str, typer.Option("--code", help="Appropriation code")],
    fiscal_year: Annotated[int, typer.Option("--fiscal-year", help="Fiscal year")],
    db: DbOption = None,
) -> None:
    """Show an appropriation with its allocation history"""
    fc = get_control(db)

    with reported_errors():
        appropriation = fc.get_appropriation_by_code(code, fiscal_year)
        appropriation["allocations"] = fc.get_allocations(appropriation["appropriation_id"])

    echo_json(appropriation)


@appropriation_app.command("list")
def appropriation_list(
    fiscal_year: Annotated[
        Optional[int],
        typer.Option("--fiscal-year", help="Filter by fiscal year"),
    ] = None,
    db: DbOption = None,
) -> None:
    """List appropriations"""
    fc = get_control(db)
    appropriations = fc.list_appropriations(fiscal_year)

    if not appropriations:
        typer.echo("No appropriations")
        return

    typer.echo(f"Appropriations ({len(appropriations)}):")
    for a in appropriations:
        typer.echo(
            f"  {a['code']} FY{a['fiscal_year']}: available ${format_cents(a['available_cents'])}"
            f" of ${format_cents(a['total_cents'])}"
        )


@appropriation_app.command("check")
def appropriation_check(
    code: Annotated[str, typer.Option("--code", help="Appropriation code")],
    fiscal_year: Annotated[int, typer.Option("--fiscal-year", help="Fiscal year")],
    amount: Annotated[str, typer.Option("--amount", help="Amount to check")],
    db: DbOption = None,
) -> None:
    """Check whether an amount is available (read-only)"""
    fc = get_control(db)

    with reported_errors():
        result = fc.check_availability(code, fiscal_year, parse_amount(amount))

    mark = "✓" if result.available else "✗"
    typer.echo(f"{mark} {'Available' if result.available else 'Not available'}")
    typer.echo(f"  Requested: ${format_cents(result.requested_cents)}")
    typer.echo(f"  Available: ${format_cents(result.available_cents)}")
    if result.shortage_cents:
        typer.echo(f"  Shortage: ${format_cents(result.shortage_cents)}")
    typer.echo(f"  Risk: {result.risk.value}")


# Workflow commands


@workflow_app.command("create")
def workflow_create(
    name: Annotated[str, typer.Option("--name", help="Workflow name")],
    entity_type: Annotated[
        str,
        typer.Option("--entity-type", help="budget, program, execution or lineitem"),
    ],
    step: Annotated[
        list[str],
        typer.Option("--step", help="ORDER:ROLE[:APPROVER[:THRESHOLD]] (repeatable)"),
    ],
    description: Annotated[
        Optional[str],
        typer.Option("--description", help="Workflow description"),
    ] = None,
    by: Annotated[Optional[str], typer.Option("--by", help="Acting user")] = None,
    db: DbOption = None,
) -> None:
    """Define an approval workflow"""
    fc = get_control(db)

    with reported_errors():
        workflow = fc.create_workflow(
            name=name,
            entity_type=entity_type,
            steps=[parse_step(s) for s in step],
            description=description,
            created_by=by,
        )

    typer.echo(f"✓ Created workflow: {workflow['workflow_id']}")
    typer.echo(f"  Entity type: {workflow['entity_type']}")
    for s in workflow["steps"]:
        approver = f" ({s['approver_id']})" if s.get("approver_id") else ""
        typer.echo(f"  Step {s['order']}: {s['required_role']}{approver}")


@workflow_app.command("list")
def workflow_list(
    entity_type: Annotated[
        Optional[str],
        typer.Option("--entity-type", help="Filter by entity type"),
    ] = None,
    db: DbOption = None,
) -> None:
    """List approval workflows"""
    fc = get_control(db)
    workflows = fc.list_workflows(entity_type)

    if not workflows:
        typer.echo("No workflows")
        return

    typer.echo(f"Workflows ({len(workflows)}):")
    for w in workflows:
        state = "active" if w["active"] else "inactive"
        typer.echo(
            f"  {w['workflow_id']}: {w['name']} [{w['entity_type']}, "
            f"{len(w['steps'])} steps, rev {w['revision']}, {state}]"
        )


# Budget commands


@budget_app.command("create")
def budget_create(
    fiscal_year: Annotated[int, typer.Option("--fiscal-year", help="Fiscal year")],
    title: Annotated[str, typer.Option("--title", help="Budget title")],
    amount: Annotated[str, typer.Option("--amount", help="Budget amount")],
    by: Annotated[str, typer.Option("--by", help="Creating user")],
    department: Annotated[
        Optional[str],
        typer.Option("--department", help="Department"),
    ] = None,
    description: Annotated[
        Optional[str],
        typer.Option("--description", help="Description"),
    ] = None,
    appropriation: Annotated[
        Optional[str],
        typer.Option("--appropriation", help="Appropriation code (makes the budget fund-gated)"),
    ] = None,
    purpose: Annotated[
        Optional[str],
        typer.Option("--purpose", help="Purpose (must match restricted funds' tags)"),
    ] = None,
    db: DbOption = None,
) -> None:
    """Create a draft budget"""
    fc = get_control(db)

    with reported_errors():
        budget = fc.create_budget(
            fiscal_year=fiscal_year,
            title=title,
            amount=parse_amount(amount),
            created_by=by,
            description=description,
            department=department,
            appropriation_code=appropriation,
            purpose=purpose,
        )

    typer.echo(f"✓ Created budget: {budget['budget_id']}")
    typer.echo(f"  Title: {budget['title']}")
    typer.echo(f"  Amount: ${format_cents(budget['amount_cents'])}")
    typer.echo(f"  Status: {budget['status']} (version {budget['version']})")


@budget_app.command("update")
def budget_update(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    by: Annotated[str, typer.Option("--by", help="Editing user")],
    title: Annotated[Optional[str], typer.Option("--title", help="New title")] = None,
    amount: Annotated[Optional[str], typer.Option("--amount", help="New amount")] = None,
    description: Annotated[
        Optional[str],
        typer.Option("--description", help="New description"),
    ] = None,
    department: Annotated[
        Optional[str],
        typer.Option("--department", help="New department"),
    ] = None,
    purpose: Annotated[Optional[str], typer.Option("--purpose", help="New purpose")] = None,
    db: DbOption = None,
) -> None:
    """Edit a draft or rejected budget (creates a new version)"""
    fc = get_control(db)

    updates: dict[str, Any] = {}
    if title is not None:
        updates["title"] = title
    if description is not None:
        updates["description"] = description
    if department is not None:
        updates["department"] = department
    if purpose is not None:
        updates["purpose"] = purpose

    with reported_errors():
        if amount is not None:
            updates["amount"] = parse_amount(amount)
        budget = fc.update_budget(budget_id, updates, by)

    typer.echo(f"✓ Updated budget to version {budget['version']}")


@budget_app.command("submit")
def budget_submit(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    by: Annotated[str, typer.Option("--by", help="Submitting user")],
    comments: Annotated[
        Optional[str],
        typer.Option("--comments", help="Submission comments"),
    ] = None,
    db: DbOption = None,
) -> None:
    """Submit a budget for approval"""
    fc = get_control(db)

    with reported_errors():
        budget = fc.submit_budget(budget_id, by, comments)

    typer.echo(f"✓ Submitted budget: {budget['budget_id']}")
    typer.echo(f"  Approval request: {budget['approval_request_id']}")
    typer.echo(f"  Status: {budget['status']} / {budget['approval_status']}")


@budget_app.command("rollback")
def budget_rollback(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    version: Annotated[int, typer.Option("--version", help="Version to restore")],
    by: Annotated[str, typer.Option("--by", help="Editing user")],
    db: DbOption = None,
) -> None:
    """Restore an earlier version as a new version"""
    fc = get_control(db)

    with reported_errors():
        budget = fc.rollback_budget(budget_id, version, by)

    typer.echo(f"✓ Rolled back to version {version}; budget is now at version {budget['version']}")


@budget_app.command("show")
def budget_show(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    db: DbOption = None,
) -> None:
    """Show a budget with its rollup"""
    fc = get_control(db)

    with reported_errors():
        budget = fc.get_budget(budget_id)

    echo_json(budget)


@budget_app.command("versions")
def budget_versions(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    db: DbOption = None,
) -> None:
    """List a budget's versions, newest first"""
    fc = get_control(db)

    with reported_errors():
        versions = fc.get_budget_versions(budget_id)

    typer.echo(f"Versions ({len(versions)}):")
    for v in versions:
        typer.echo(f"  v{v['version']} {v['created_at']} by {v['created_by']}: {v['change_summary']}")


@budget_app.command("summary")
def budget_summary(
    fiscal_year: Annotated[
        Optional[int],
        typer.Option("--fiscal-year", help="Fiscal year"),
    ] = None,
    db: DbOption = None,
) -> None:
    """Budget, obligation and expenditure summaries"""
    fc = get_control(db)

    echo_json(
        {
            "budgets": fc.get_budget_summary(fiscal_year),
            "obligations": fc.get_obligation_summary(fiscal_year),
            "expenditures": fc.get_expenditure_summary(fiscal_year),
        }
    )


# Approval commands


@approval_app.command("decide")
def approval_decide(
    request_id: Annotated[str, typer.Option("--request", help="Approval request ID")],
    decision: Annotated[str, typer.Option("--decision", help="approve or reject")],
    approver: Annotated[str, typer.Option("--approver", help="Deciding user")],
    role: Annotated[
        Optional[list[str]],
        typer.Option("--role", help="Role held by the approver (repeatable)"),
    ] = None,
    comments: Annotated[
        Optional[str],
        typer.Option("--comments", help="Decision comments"),
    ] = None,
    db: DbOption = None,
) -> None:
    """Approve or reject the current step of a request"""
    fc = get_control(db)

    with reported_errors():
        request = fc.process_approval(request_id, decision, approver, comments, role or [])

    typer.echo(f"✓ Recorded {decision} on request {request_id}")
    typer.echo(f"  Status: {request['status']} (step {request['current_step'] + 1} of {len(request['steps'])})")


@approval_app.command("pending")
def approval_pending(
    approver: Annotated[str, typer.Option("--approver", help="Approver ID")],
    role: Annotated[
        Optional[list[str]],
        typer.Option("--role", help="Role held by the approver (repeatable)"),
    ] = None,
    db: DbOption = None,
) -> None:
    """List requests waiting for this approver"""
    fc = get_control(db)
    pending = fc.get_pending_approvals(approver, role or [])

    if not pending:
        typer.echo("No pending approvals")
        return

    typer.echo(f"Pending approvals ({len(pending)}):")
    for r in pending:
        amount = f" ${format_cents(r['amount_cents'])}" if r.get("amount_cents") is not None else ""
        typer.echo(f"  {r['request_id']}: {r['entity_type']} {r['entity_id']}{amount}")


@approval_app.command("cancel")
def approval_cancel(
    request_id: Annotated[str, typer.Option("--request", help="Approval request ID")],
    by: Annotated[str, typer.Option("--by", help="Cancelling user")],
    reason: Annotated[Optional[str], typer.Option("--reason", help="Reason")] = None,
    db: DbOption = None,
) -> None:
    """Cancel an approval request"""
    fc = get_control(db)

    with reported_errors():
        request = fc.cancel_approval_request(request_id, by, reason)

    typer.echo(f"✓ Cancelled request {request['request_id']}")


# Obligation commands


@obligation_app.command("create")
def obligation_create(
    budget_id: Annotated[str, typer.Option("--budget", help="Budget ID")],
    document: Annotated[str, typer.Option("--document", help="Obligating document number")],
    amount: Annotated[str, typer.Option("--amount", help="Amount")],
    description: Annotated[str, typer.Option("--description", help="Description")],
    by: Annotated[str, typer.Option("--by", help="Recording user")],
    date: Annotated[
        Optional[str],
        typer.Option("--date", help="Obligation date (ISO 8601, default now)"),
    ] = None,
    vendor: Annotated[Optional[str], typer.Option("--vendor", help="Vendor")] = None,
    purpose: Annotated[
        Optional[str],
        typer.Option("--purpose", help="Purpose (defaults to the budget's)"),
    ] = None,
    db: DbOption = None,
) -> None:
    """Record an obligation against an approved budget"""
    fc = get_control(db)

    with reported_errors():
        obligation = fc.create_obligation(
            budget_id=budget_id,
            document_number=document,
            amount=parse_amount(amount),
            description=description,
            obligation_date=datetime.fromisoformat(date) if date else fc.time_provider.now(),
            created_by=by,
            vendor=vendor,
            purpose=purpose,
        )

    typer.echo(f"✓ Created obligation: {obligation['obligation_id']}")
    typer.echo(f"  Amount: ${format_cents(obligation['amount_cents'])}")
    typer.echo(f"  Status: {obligation['status']}")


# Expenditure commands


@expenditure_app.command("create")
def expenditure_create(
    budget_id: Annotated[str, typer.Option("--budget", help="Budget ID")],
    amount: Annotated[str, typer.Option("--amount", help="Amount")],
    description: Annotated[str, typer.Option("--description", help="Description")],
    by: Annotated[str, typer.Option("--by", help="Recording user")],
    obligation: Annotated[
        Optional[str],
        typer.Option("--obligation", help="Obligation being paid"),
    ] = None,
    date: Annotated[
        Optional[str],
        typer.Option("--date", help="Payment date (ISO 8601, default now)"),
    ] = None,
    vendor: Annotated[Optional[str], typer.Option("--vendor", help="Vendor")] = None,
    invoice: Annotated[Optional[str], typer.Option("--invoice", help="Invoice number")] = None,
    db: DbOption = None,
) -> None:
    """Record a payment"""
    fc = get_control(db)

    with reported_errors():
        expenditure = fc.create_expenditure(
            budget_id=budget_id,
            amount=parse_amount(amount),
            description=description,
            payment_date=datetime.fromisoformat(date) if date else fc.time_provider.now(),
            created_by=by,
            obligation_id=obligation,
            vendor=vendor,
            invoice_number=invoice,
        )

    typer.echo(f"✓ Created expenditure: {expenditure['expenditure_id']}")
    typer.echo(f"  Amount: ${format_cents(expenditure['amount_cents'])}")


# Variance commands


@variance_app.command("analyze")
def variance_analyze(
    budget_id: Annotated[str, typer.Option("--budget", help="Budget ID")],
    period: Annotated[str, typer.Option("--period", help="Reporting period, e.g. 2025-Q2")],
    by: Annotated[str, typer.Option("--by", help="Analyst")] = "system",
    db: DbOption = None,
) -> None:
    """Compare planned and actual spending of a budget"""
    fc = get_control(db)

    with reported_errors():
        analysis = fc.analyze_budget_variance(budget_id, period, by)

    typer.echo(f"Variance for {period}: {analysis['status']}")
    typer.echo(f"  Planned: ${format_cents(analysis['planned_cents'])}")
    typer.echo(f"  Actual: ${format_cents(analysis['actual_cents'])}")
    typer.echo(f"  Variance: ${format_cents(analysis['variance_cents'])} ({analysis['variance_pct']}%)")


if __name__ == "__main__":
    app()
