import json
from typing import Any, Dict, List, Union

from topoflow.messaging.errors import ErrorKind, MessagingError, TargetAttachError
from topoflow.messaging.facade import ServiceFacade
from topoflow.messaging.models import EntryFailure, EventPattern, PublishEventsResult, Rule, RuleInfo, Target


class EventRouterClient(ServiceFacade):
    """Event bus operations

    Supports:
    - Idempotent bus creation (an existing bus is not a failure)
    - Rules matching on source and detail type, with attached targets
    - Publishing events, reporting per-entry failures instead of raising
    """
    service_name = "router"

    async def create_bus(self, name: str) -> None:
        try:
            await self._call("create_event_bus", Name=name)
        except MessagingError as e:
            if e.kind is not ErrorKind.ALREADY_EXISTS:
                raise
            self._logger.warning(f"Event bus already exists: {name}")
            return
        self._logger.info(f"Event bus created: {name}")

    async def define_rule(self, bus_name: str, rule_name: str, pattern: EventPattern, enabled: bool = True) -> str:
        """Create or replace a rule

        Re-defining a rule with the same name replaces it.

        Returns:
            The rule identity (ARN)
        """
        rule = Rule(bus_name=bus_name, name=rule_name, pattern=pattern, enabled=enabled)
        response = await self._call(
            "put_rule",
            Name=rule.name,
            EventBusName=rule.bus_name,
            EventPattern=rule.pattern.to_json(),
            State=rule.state,
        )
        self._logger.info(f"Rule created: {rule.name}")
        return response["RuleArn"]

    async def attach_target(self, bus_name: str, rule_name: str, target: Target) -> None:
        """Attach a target to a rule

        Raises:
            TargetAttachError: If the router reports the target as failed
        """
        response = await self._call(
            "put_targets", Rule=rule_name, EventBusName=bus_name, Targets=[target.to_request()]
        )
        failed = response.get("FailedEntryCount", 0)
        if failed:
            entries = response.get("FailedEntries", [])
            for entry in entries:
                self._logger.error(f"Target {entry.get('TargetId')} rejected: "
                                   f"{entry.get('ErrorCode')} - {entry.get('ErrorMessage')}")
            code = entries[0].get("ErrorCode") if entries else None
            raise TargetAttachError(
                f"{failed} target(s) rejected for rule '{rule_name}'",
                service=self.service_name,
                operation="put_targets",
                code=code,
            )
        self._logger.info(f"Target {target.target_id} added to rule: {rule_name}")

    async def publish_event(
        self,
        bus_name: str,
        source: str,
        detail_type: str,
        detail: Union[str, Dict[str, Any]],
    ) -> PublishEventsResult:
        """Publish one event to a bus

        The call resolves normally even if the router reports failed
        entries; they are logged at error level and returned in the result.
        """
        if not isinstance(detail, str):
            detail = json.dumps(detail)
        response = await self._call(
            "put_events",
            Entries=[{
                "EventBusName": bus_name,
                "Source": source,
                "DetailType": detail_type,
                "Detail": detail,
            }],
        )
        result = PublishEventsResult(failed_entry_count=response.get("FailedEntryCount", 0))
        for entry in response.get("Entries", []):
            if entry.get("ErrorCode"):
                result.failures.append(
                    EntryFailure(error_code=entry["ErrorCode"], error_message=entry.get("ErrorMessage"))
                )
            elif entry.get("EventId"):
                result.event_ids.append(entry["EventId"])

        if result.failed_entry_count > 0:
            self._logger.error(f"Failed to send event to bus '{bus_name}'")
            for failure in result.failures:
                self._logger.error(f"Error: {failure.error_code} - {failure.error_message}")
        else:
            self._logger.info(f"Event sent to bus: {detail_type} - {detail}")
        return result

    async def list_rules(self, bus_name: str) -> List[RuleInfo]:
        response = await self._call("list_rules", EventBusName=bus_name)
        rules = [
            RuleInfo(name=raw["Name"], state=raw.get("State", "ENABLED"), event_pattern=raw.get("EventPattern"))
            for raw in response.get("Rules", [])
        ]
        self._logger.info(f"Rules for event bus '{bus_name}':")
        for rule in rules:
            self._logger.info(f"  - {rule.name} (State: {rule.state})")
        return rules
