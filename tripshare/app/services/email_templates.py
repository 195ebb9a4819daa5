"""
Email content for approval, consolidation and join request events.
"""

from html import escape
from typing import List, Optional, Sequence, Tuple

from tripshare.app.core.approval_tokens import ApprovalLinks
from tripshare.app.core.fleet_config import vehicle_for
from tripshare.app.domain.approval.status_messages import message_for
from tripshare.app.models.join_request import JoinRequest
from tripshare.app.models.optimization_group import OptimizationGroup
from tripshare.app.models.trip import Trip
from tripshare.app.services.notifier import OutboundEmail

Row = Tuple[str, str]


def _fmt(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def _trip_rows(trip: Trip) -> List[Row]:
    rows = [
        ("Requester", f"{trip.requester_name} <{trip.requester_email}>"),
        ("Route", f"{trip.origin} -> {trip.destination}"),
        ("Departure", _fmt(trip.departure_at)),
    ]
    if trip.return_at:
        rows.append(("Return", _fmt(trip.return_at)))
    rows.append(("Vehicle", vehicle_for(trip.vehicle_type).name))
    if trip.purpose:
        rows.append(("Purpose", trip.purpose))
    return rows


def _render(heading: str, intro: str, rows: Sequence[Row], actions: Sequence[Row] = ()) -> Tuple[str, str]:
    """Build matching HTML and plain text bodies."""
    table = "".join(
        f"<tr><th align='left'>{escape(k)}</th><td>{escape(str(v))}</td></tr>" for k, v in rows
    )
    buttons = "".join(f"<p><a href='{escape(url)}'>{escape(label)}</a></p>" for label, url in actions)
    html = f"<h2>{escape(heading)}</h2><p>{escape(intro)}</p><table>{table}</table>{buttons}"

    lines = [heading, "", intro, ""]
    lines += [f"{k}: {v}" for k, v in rows]
    if actions:
        lines.append("")
        lines += [f"{label}: {url}" for label, url in actions]
    return html, "\n".join(lines)


def approval_request(
    trip: Trip,
    links: ApprovalLinks,
    base_url: str,
    approver_email: str,
    escalated: bool = False,
    reminder: bool = False,
) -> OutboundEmail:
    subject = message_for(trip.status).email_subject
    if escalated:
        subject = f"Escalated: {subject}"
    if reminder:
        subject = f"Reminder: {subject}"
    rows = _trip_rows(trip) + [("Respond by", _fmt(links.expires_at))]
    html, text = _render(
        subject,
        f"{trip.requester_name} needs your approval for a business trip.",
        rows,
        actions=[
            ("Approve", f"{base_url}/approvals/approve?token={links.approve_token}"),
            ("Reject", f"{base_url}/approvals/reject?token={links.reject_token}"),
        ],
    )
    return OutboundEmail(
        to=[approver_email],
        cc=[] if escalated else list(trip.cc_emails or []),
        subject=f"{subject}: {trip.origin} -> {trip.destination}",
        html_body=html,
        text_body=text,
        category="approval_request",
        trip_id=trip.id,
    )


def urgent_admin_alert(trip: Trip, admin_emails: List[str]) -> OutboundEmail:
    status = message_for(trip.status)
    html, text = _render(status.email_subject, status.admin_message, _trip_rows(trip))
    return OutboundEmail(
        to=admin_emails,
        subject=f"[Admin] Urgent trip departing {_fmt(trip.departure_at)}",
        html_body=html,
        text_body=text,
        category="urgent_alert",
        trip_id=trip.id,
    )


def status_update(trip: Trip, note: Optional[str] = None) -> OutboundEmail:
    """Tell the requester their trip changed status."""
    status = message_for(trip.status)
    rows = _trip_rows(trip) + [("Status", status.label)]
    if note:
        rows.append(("Note", note))
    html, text = _render(status.email_subject, status.user_message, rows)
    return OutboundEmail(
        to=[trip.requester_email],
        subject=status.email_subject,
        html_body=html,
        text_body=text,
        category=f"status_{trip.status.value}",
        trip_id=trip.id,
    )


def expired_admin_notice(trip: Trip, admin_emails: List[str]) -> OutboundEmail:
    status = message_for(trip.status)
    rows = _trip_rows(trip) + [("Manager", trip.manager_email or "-")]
    html, text = _render(status.email_subject, status.admin_message, rows)
    return OutboundEmail(
        to=admin_emails,
        subject=f"[Admin] {status.email_subject}: trip #{trip.id}",
        html_body=html,
        text_body=text,
        category="expired_admin",
        trip_id=trip.id,
    )


def schedule_update(trip: Trip, group: OptimizationGroup) -> OutboundEmail:
    status = message_for(trip.status)
    rows = _trip_rows(trip) + [
        ("Original departure", _fmt(trip.original_departure_at)),
        ("Shared with", f"{len(group.trip_ids) - 1} colleague(s)"),
        ("Your share", f"{trip.actual_cost:,.0f}" if trip.actual_cost is not None else "-"),
    ]
    html, text = _render(status.email_subject, status.user_message, rows)
    return OutboundEmail(
        to=[trip.requester_email],
        subject=status.email_subject,
        html_body=html,
        text_body=text,
        category="schedule_update",
        trip_id=trip.id,
    )


def join_request_received(request: JoinRequest, trip: Trip, admin_emails: List[str]) -> OutboundEmail:
    rows = [
        ("Rider", f"{request.requester_name} <{request.requester_email}>"),
        ("Department", request.requester_department or "-"),
        ("Reason", request.reason or "-"),
    ] + _trip_rows(trip)
    html, text = _render("New Join Request", "A rider asked to join an existing trip.", rows)
    return OutboundEmail(
        to=admin_emails,
        cc=[request.manager_email] if request.manager_email else [],
        subject=f"[Admin] Join request for trip #{trip.id}",
        html_body=html,
        text_body=text,
        category="join_request",
        trip_id=trip.id,
    )


def join_request_decision(request: JoinRequest) -> OutboundEmail:
    heading = f"Join Request {request.status.value.capitalize()}"
    rows = [("Trip", f"#{request.trip_id}"), ("Status", request.status.value)]
    if request.admin_notes:
        rows.append(("Notes", request.admin_notes))
    if request.created_trip_id:
        rows.append(("Your trip", f"#{request.created_trip_id}"))
    html, text = _render(heading, "Your request to join a trip has been updated.", rows)
    return OutboundEmail(
        to=[request.requester_email],
        subject=heading,
        html_body=html,
        text_body=text,
        category=f"join_{request.status.value}",
        trip_id=request.trip_id,
    )
