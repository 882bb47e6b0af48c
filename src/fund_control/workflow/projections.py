"""
Workflow Projections - Read models for workflows and approval requests

WorkflowRegistry: workflow definitions and their current steps
ApprovalRequestRegistry: request state, the action trail of each request,
the active request per entity and a pending-approval index keyed by the
current step's named approver and required role
"""

from typing import Any

from fund_control.kernel.events import Event

TERMINAL_EVENTS = {
    "ApprovalGranted": "approved",
    "ApprovalRejected": "rejected",
    "ApprovalCancelled": "cancelled",
}


class WorkflowRegistry:
    """
    Built from events: WorkflowDefined, WorkflowRevised, WorkflowDeactivated

    Query methods: get, list_all, list_by_entity_type
    """

    def __init__(self) -> None:
        self.workflows: dict[str, dict[str, Any]] = {}
        self._seq = 0

    def apply_event(self, event: Event) -> None:
        payload = event.payload

        if event.event_type == "WorkflowDefined":
            self._seq += 1
            self.workflows[payload["workflow_id"]] = {
                "workflow_id": payload["workflow_id"],
                "name": payload["name"],
                "description": payload.get("description"),
                "entity_type": payload["entity_type"],
                "steps": payload["steps"],
                "active": True,
                "revision": 1,
                "created_by": payload.get("defined_by"),
                "created_at": payload["defined_at"],
                "updated_at": payload["defined_at"],
                "defined_seq": self._seq,
                "stream_version": event.version,
            }
            return

        workflow = self.workflows.get(payload.get("workflow_id", ""))
        if workflow is None:
            return

        if event.event_type == "WorkflowRevised":
            workflow["steps"] = payload["steps"]
            workflow["revision"] = payload["revision"]
            workflow["updated_at"] = payload["revised_at"]
        elif event.event_type == "WorkflowDeactivated":
            workflow["active"] = False
            workflow["updated_at"] = payload["deactivated_at"]
        workflow["stream_version"] = event.version

    def get(self, workflow_id: str) -> dict[str, Any] | None:
        return self.workflows.get(workflow_id)

    def list_all(self) -> list[dict[str, Any]]:
        return sorted(self.workflows.values(), key=lambda w: w["defined_seq"])

    def list_by_entity_type(self, entity_type: str) -> list[dict[str, Any]]:
        return [w for w in self.list_all() if w["entity_type"] == entity_type]


class ApprovalRequestRegistry:
    """
    Main approval projection

    Built from events: ApprovalRequested, ReviewStarted,
                       ApprovalActionRecorded, ApprovalStepAdvanced,
                       ApprovalGranted, ApprovalRejected, ApprovalCancelled

    Query methods: get, get_actions, active_request_for, pending_for,
                   list_requests, history
    """

    def __init__(self) -> None:
        self.requests: dict[str, dict[str, Any]] = {}
        self.actions: dict[str, list[dict[str, Any]]] = {}
        self.active_by_entity: dict[tuple[str, str], str] = {}
        self._by_approver: dict[str, set[str]] = {}
        self._by_role: dict[str, set[str]] = {}

    def apply_event(self, event: Event) -> None:
        payload = event.payload

        if event.event_type == "ApprovalRequested":
            self._apply_requested(event)
            return

        request = self.requests.get(payload.get("request_id", ""))
        if request is None:
            return

        if event.event_type == "ReviewStarted":
            request["status"] = "in_review"
            request["current_step"] = payload["current_step"]
            request["updated_at"] = payload["started_at"]
            self._index(request, payload["step"])
        elif event.event_type == "ApprovalActionRecorded":
            self.actions[request["request_id"]].append(dict(payload))
            request["updated_at"] = payload["acted_at"]
        elif event.event_type == "ApprovalStepAdvanced":
            self._unindex(request)
            request["current_step"] = payload["current_step"]
            request["updated_at"] = payload["advanced_at"]
            self._index(request, payload["step"])
        elif event.event_type in TERMINAL_EVENTS:
            self._unindex(request)
            request["status"] = TERMINAL_EVENTS[event.event_type]
            request["completed_at"] = payload["completed_at"]
            request["updated_at"] = payload["completed_at"]
            key = (request["entity_type"], request["entity_id"])
            if self.active_by_entity.get(key) == request["request_id"]:
                del self.active_by_entity[key]

        request["stream_version"] = event.version

    def _apply_requested(self, event: Event) -> None:
        payload = event.payload
        request_id = payload["request_id"]

        self.requests[request_id] = {
            "request_id": request_id,
            "workflow_id": payload["workflow_id"],
            "workflow_revision": payload["workflow_revision"],
            "entity_type": payload["entity_type"],
            "entity_id": payload["entity_id"],
            "requested_by": payload["requested_by"],
            "amount_cents": payload.get("amount_cents"),
            "comments": payload.get("comments"),
            "steps": payload["steps"],
            "current_step": 0,
            "status": "pending",
            "requested_at": payload["requested_at"],
            "updated_at": payload["requested_at"],
            "completed_at": None,
            "stream_version": event.version,
        }
        self.actions[request_id] = []
        self.active_by_entity[(payload["entity_type"], payload["entity_id"])] = request_id

    # ========== Pending-approval index ==========

    def _index(self, request: dict[str, Any], step: dict[str, Any]) -> None:
        request_id = request["request_id"]
        approver_id = step.get("approver_id")
        request["awaiting_approver_id"] = approver_id
        request["awaiting_role"] = step["required_role"]
        if approver_id:
            self._by_approver.setdefault(approver_id, set()).add(request_id)
        self._by_role.setdefault(step["required_role"], set()).add(request_id)

    def _unindex(self, request: dict[str, Any]) -> None:
        request_id = request["request_id"]
        approver_id = request.pop("awaiting_approver_id", None)
        role = request.pop("awaiting_role", None)
        if approver_id:
            self._by_approver.get(approver_id, set()).discard(request_id)
        if role:
            self._by_role.get(role, set()).discard(request_id)

    # ========== Query Methods ==========

    def get(self, request_id: str) -> dict[str, Any] | None:
        return self.requests.get(request_id)

    def get_actions(self, request_id: str) -> list[dict[str, Any]]:
        """Decisions recorded on a request, oldest first"""
        return list(self.actions.get(request_id, []))

    def active_request_for(self, entity_type: str, entity_id: str) -> str | None:
        return self.active_by_entity.get((entity_type, entity_id))

    def pending_for(
        self, approver_id: str, roles: list[str] | tuple[str, ...] = ()
    ) -> list[dict[str, Any]]:
        """
        In-review requests whose current step the approver may decide

        Index lookup: the approver's own entries plus the entries of each
        role they hold. PENDING requests (review not started) never appear.
        """
        request_ids = set(self._by_approver.get(approver_id, set()))
        for role in roles:
            request_ids |= self._by_role.get(role, set())
        found = [self.requests[request_id] for request_id in request_ids]
        return sorted(found, key=lambda r: (r["requested_at"], r["request_id"]))

    def list_requests(
        self,
        entity_type: str | None = None,
        entity_id: str | None = None,
        status: str | None = None,
        requested_by: str | None = None,
    ) -> list[dict[str, Any]]:
        """Requests matching all given filters, newest first"""
        found = [
            r
            for r in self.requests.values()
            if (entity_type is None or r["entity_type"] == entity_type)
            and (entity_id is None or r["entity_id"] == entity_id)
            and (status is None or r["status"] == status)
            and (requested_by is None or r["requested_by"] == requested_by)
        ]
        return sorted(found, key=lambda r: (r["requested_at"], r["request_id"]), reverse=True)

    def history(self, entity_type: str, entity_id: str) -> list[dict[str, Any]]:
        """Every request ever made for an entity, with its actions, newest first"""
        return [
            {**request, "actions": self.get_actions(request["request_id"])}
            for request in self.list_requests(entity_type=entity_type, entity_id=entity_id)
        ]
