"""Action Executor - Apply rule actions to a ticket, one fault-isolated step at a time"""
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, List, Optional

from ..config.settings import settings
from ..domain.models import Action, ActionResult, Ticket
from ..domain.enums import ActionType
from ..domain.errors import ActionExecutionError, TicketNotFoundError
from ..domain.interfaces import NotificationDispatcher, TeamResolver, TicketStore
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ActionExecutor:
    """
    Execute an ordered list of actions against a ticket
    
    Actions run strictly in list order. A failing action is recorded as a
    failed ActionResult and the next action still runs; nothing raised by a
    handler escapes execute().
    
    Team resolution and notification dispatch run on a worker thread and are
    bounded by ``timeout_seconds``.
    """
    
    def __init__(
        self,
        ticket_store: TicketStore,
        team_resolver: Optional[TeamResolver] = None,
        notification_dispatcher: Optional[NotificationDispatcher] = None,
        timeout_seconds: Optional[float] = None,
        max_workers: int = 4
    ):
        self.ticket_store = ticket_store
        self.team_resolver = team_resolver
        self.notification_dispatcher = notification_dispatcher
        self.timeout_seconds = timeout_seconds or settings.external_call_timeout_seconds
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="automation-ext")
        
        self._handlers: Dict[ActionType, Callable[[Dict[str, Any], Ticket], Dict[str, Any]]] = {
            ActionType.ASSIGN_TO_USER: self._assign_to_user,
            ActionType.ASSIGN_TO_TEAM: self._assign_to_team,
            ActionType.SET_PRIORITY: self._set_priority,
            ActionType.SET_STATUS: self._set_status,
            ActionType.ADD_TAG: self._add_tag,
            ActionType.REMOVE_TAG: self._remove_tag,
            ActionType.SEND_NOTIFICATION: self._send_notification,
        }
    
    def execute(self, actions: List[Action], ticket: Ticket) -> List[ActionResult]:
        """
        Apply actions in order
        
        Args:
            actions: Ordered actions of one rule or escalation step
            ticket: Ticket the actions apply to
            
        Returns:
            One ActionResult per action, in the same order
        """
        results: List[ActionResult] = []
        for action in actions:
            results.append(self._execute_one(action, ticket))
        return results
    
    def close(self) -> None:
        """Release the worker threads"""
        self._pool.shutdown(wait=False)
    
    def _execute_one(self, action: Action, ticket: Ticket) -> ActionResult:
        try:
            handler = self._handlers.get(ActionType(action.type))
        except ValueError:
            handler = None
        
        if handler is None:
            logger.warning(
                f"Unsupported action type: {action.type}",
                extra={"ticket_id": ticket.ticket_id, "action_type": action.type}
            )
            return ActionResult(
                action_type=action.type,
                success=False,
                error=f"Unsupported action type: {action.type}",
                applied_at=utc_now()
            )
        
        try:
            details = handler(action.parameters, ticket) or {}
            return ActionResult(
                action_type=action.type,
                success=True,
                applied_at=utc_now(),
                details=details
            )
        except Exception as e:
            logger.warning(
                f"Action {action.type} failed on ticket {ticket.ticket_id}: {e}",
                extra={
                    "ticket_id": ticket.ticket_id,
                    "action_type": action.type,
                    "error_type": type(e).__name__
                }
            )
            return ActionResult(
                action_type=action.type,
                success=False,
                error=str(e),
                applied_at=utc_now()
            )
    
    # =========================================================================
    # Handlers
    # =========================================================================
    
    def _assign_to_user(self, params: Dict[str, Any], ticket: Ticket) -> Dict[str, Any]:
        user_id = self._require(params, "user_id")
        self.ticket_store.apply_patch(ticket.ticket_id, {"assigned_agent_id": user_id})
        return {"assigned_agent_id": user_id}
    
    def _assign_to_team(self, params: Dict[str, Any], ticket: Ticket) -> Dict[str, Any]:
        team_id = self._require(params, "team_id")
        if self.team_resolver is None:
            raise ActionExecutionError("No team resolver configured")
        
        user_id = self._call_external(
            "team resolution", self.team_resolver.resolve_assignee, team_id
        )
        if not user_id:
            raise ActionExecutionError(
                f"No available agent in team {team_id}", details={"team_id": team_id}
            )
        
        self.ticket_store.apply_patch(
            ticket.ticket_id,
            {"assigned_agent_id": user_id, "assigned_team_id": team_id}
        )
        return {"assigned_agent_id": user_id, "assigned_team_id": team_id}
    
    def _set_priority(self, params: Dict[str, Any], ticket: Ticket) -> Dict[str, Any]:
        priority = self._require(params, "priority")
        self.ticket_store.apply_patch(ticket.ticket_id, {"priority": priority})
        return {"priority": priority}
    
    def _set_status(self, params: Dict[str, Any], ticket: Ticket) -> Dict[str, Any]:
        status = self._require(params, "status")
        self.ticket_store.apply_patch(ticket.ticket_id, {"status": status})
        return {"status": status}
    
    def _add_tag(self, params: Dict[str, Any], ticket: Ticket) -> Dict[str, Any]:
        tag = self._require(params, "tag")
        tags = self._current_tags(ticket)
        if tag in tags:
            return {"tags": tags, "changed": False}
        tags.append(tag)
        self.ticket_store.apply_patch(ticket.ticket_id, {"tags": tags})
        return {"tags": tags, "changed": True}
    
    def _remove_tag(self, params: Dict[str, Any], ticket: Ticket) -> Dict[str, Any]:
        tag = self._require(params, "tag")
        tags = self._current_tags(ticket)
        if tag not in tags:
            return {"tags": tags, "changed": False}
        tags = [t for t in tags if t != tag]
        self.ticket_store.apply_patch(ticket.ticket_id, {"tags": tags})
        return {"tags": tags, "changed": True}
    
    def _send_notification(self, params: Dict[str, Any], ticket: Ticket) -> Dict[str, Any]:
        channel = self._require(params, "channel")
        template = self._require(params, "template")
        recipients = params.get("recipients") or []
        if isinstance(recipients, str):
            recipients = [recipients]
        if not recipients:
            raise ActionExecutionError("Notification has no recipients")
        if self.notification_dispatcher is None:
            raise ActionExecutionError("No notification dispatcher configured")
        
        payload = {
            "template": template,
            "ticket_id": ticket.ticket_id,
            "tenant_id": ticket.tenant_id,
            "subject": ticket.subject,
            "priority": ticket.priority,
            "status": ticket.status,
        }
        result = self._call_external(
            "notification dispatch", self.notification_dispatcher.send, channel, list(recipients), payload
        )
        if not result.success:
            raise ActionExecutionError(
                result.error or f"Notification via {channel} was not delivered",
                details={"channel": channel}
            )
        return {"channel": channel, "recipients": list(recipients), "message_id": result.message_id}
    
    # =========================================================================
    # Helpers
    # =========================================================================
    
    @staticmethod
    def _require(params: Dict[str, Any], name: str) -> Any:
        value = params.get(name)
        if value is None or value == "":
            raise ActionExecutionError(f"Missing parameter '{name}'", details={"parameter": name})
        return value
    
    def _current_tags(self, ticket: Ticket) -> List[str]:
        """Re-read tags from the live record so earlier patches are kept"""
        current = self.ticket_store.fetch_by_id(ticket.ticket_id)
        if current is None:
            raise TicketNotFoundError(f"Ticket {ticket.ticket_id} not found")
        return list(current.tags)
    
    def _call_external(self, name: str, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a collaborator call bounded by the configured timeout"""
        future = self._pool.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            raise ActionExecutionError(
                f"{name} timed out after {self.timeout_seconds}s",
                details={"timeout_seconds": self.timeout_seconds}
            )
