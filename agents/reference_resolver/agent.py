"""
Reference Resolver Agent Module

Replaces every human-readable reference in an :class:`Intent` with a concrete
identifier:

- primary target: the table (checked against the declared schema) or the
  board (looked up by name)
- payload labels: ``<x>_name`` foreign-key labels in a record payload/filter
- entity: an item described by several properties; several matches go to
  the disambiguator
- secondary: one column of a multi-column board update; a miss only skips
  that update

References are resolved in the order :meth:`ReferenceResolverAgent.references`
lists them, primary first.  Numeric values take the fast path and are used as
ids without a lookup.  Lookups are memoised for the duration of one command.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from agents.base import Agent
from core.errors import AmbiguousReferenceError, NotFoundError, PipelineError
from core.schemas import (
    BOARD,
    MAX_CANDIDATES,
    RECORDS,
    BatchEntry,
    CandidateSet,
    Command,
    EntityReference,
    Intent,
    IntentKind,
    ReferenceRole,
    ResolvedOperation,
    SkippedOperation,
    SymbolicReference,
    as_numeric_id,
    is_numeric_id,
    normalize_candidates,
)
from services.gateways.base import BOARDS, Id, LookupGateway, columns_collection
from services.lookup_fields import LookupFieldTable
from services.progress import ProgressSink
from utils.address_parser import parse_address

logger = logging.getLogger(__name__)

Disambiguate = Callable[[CandidateSet], Awaitable[Id]]


class ResolutionSession:
    """Per-command state: lookup memo, disambiguation hook and progress."""

    def __init__(
        self,
        command: Command,
        disambiguate: Optional[Disambiguate] = None,
        progress: Optional[ProgressSink] = None,
    ):
        self.command = command
        self.disambiguate = disambiguate
        self.progress = progress
        self.memo: Dict[Tuple[str, str, str], Optional[Id]] = {}

    def emit(self, message: str, severity: str = "info") -> None:
        if self.progress is not None:
            self.progress.emit("resolving", message, severity)
        elif severity == "warning":
            logger.warning(message)
        else:
            logger.debug(message)


class ReferenceResolverAgent(Agent):
    def __init__(
        self,
        gateways: Mapping[str, LookupGateway],
        lookup_fields: Optional[LookupFieldTable] = None,
        entity_profiles: Optional[Mapping[str, Mapping[str, Any]]] = None,
        max_candidates: int = MAX_CANDIDATES,
    ):
        self.gateways = dict(gateways)
        self.lookup_fields = lookup_fields or LookupFieldTable()
        self.entity_profiles = entity_profiles or {}
        self.max_candidates = max_candidates

    async def run(self, payload: Intent, context: Dict[str, Any]):
        session = ResolutionSession(context["command"], context.get("disambiguate"), context.get("progress"))
        return await self.resolve(payload, session)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def references(self, intent: Intent) -> List[SymbolicReference]:
        """Symbolic references of ``intent`` in resolution order.

        ``field`` names the slot the resolved id is bound to:
        ``target_collection``, ``payload.<key>`` or ``filter.<key>``,
        ``entity`` and ``updates[<index>]``.
        """
        refs = [SymbolicReference(
            field="target_collection",
            value=intent.target_collection,
            collection=BOARDS if intent.system == BOARD else "tables",
            role=ReferenceRole.PRIMARY,
        )]
        if intent.system == RECORDS:
            for section, data in (("payload", intent.payload), ("filter", intent.filter or {})):
                for key, value in data.items():
                    lf = self.lookup_fields.match(intent.target_collection, key)
                    if lf is not None:
                        refs.append(SymbolicReference(
                            field=f"{section}.{key}", value=value, collection=lf.collection, role=ReferenceRole.PAYLOAD
                        ))
        if self._needs_entity(intent):
            entity = intent.entity
            refs.append(SymbolicReference(
                field="entity",
                value=entity.properties if entity else None,
                collection=entity.type if entity else "item",
                role=ReferenceRole.ENTITY,
            ))
        for index, update in enumerate(intent.updates):
            if not update.column_id and update.column_name:
                refs.append(SymbolicReference(
                    field=f"updates[{index}]", value=update.column_name,
                    collection=intent.target_collection, role=ReferenceRole.SECONDARY,
                ))
        return refs

    async def resolve_all(
        self,
        intents: List[Intent],
        command: Command,
        disambiguate: Optional[Disambiguate] = None,
        progress: Optional[ProgressSink] = None,
    ) -> List[BatchEntry]:
        """Resolve ``intents`` in order, sharing one lookup memo."""
        session = ResolutionSession(command, disambiguate, progress)
        entries: List[BatchEntry] = []
        for intent in intents:
            entries.extend(await self.resolve(intent, session))
        return entries

    async def resolve(self, intent: Intent, session: ResolutionSession) -> List[BatchEntry]:
        """Resolve the references of ``intent`` in :meth:`references` order.

        Every slot starts bound to its :class:`SymbolicReference` and is
        rebound to the id once looked up.  Operations are built from the
        bindings, so a slot left unresolved reaches the compiler still
        symbolic.
        """
        refs = self.references(intent)
        bindings: Dict[str, Any] = {ref.field: ref for ref in refs}
        for ref in refs:
            bindings[ref.field] = await self._resolve_reference(intent, ref, bindings, session)
        if intent.system == RECORDS:
            return [self._build_record(intent, bindings)]
        return self._build_board(intent, bindings, session)

    @staticmethod
    def _needs_entity(intent: Intent) -> bool:
        if intent.system == RECORDS:
            return intent.entity is not None and intent.kind.requires_filter
        return intent.kind != IntentKind.CREATE_ITEM

    async def _resolve_reference(
        self,
        intent: Intent,
        ref: SymbolicReference,
        bindings: Mapping[str, Any],
        session: ResolutionSession,
    ) -> Optional[Id]:
        if ref.role == ReferenceRole.PRIMARY:
            if intent.system == RECORDS:
                return self._resolve_table(ref.value)
            return await self._resolve_board(session, ref.value)

        if ref.role == ReferenceRole.PAYLOAD:
            if ref.value is None:
                return None
            ref_id = await self._find_id(session, RECORDS, ref.collection, ref.value)
            if ref_id is None:
                raise NotFoundError(ref.value, ref.collection, primary=False)
            return ref_id

        if ref.role == ReferenceRole.ENTITY:
            return await self._resolve_entity(session, intent.system, intent.entity, bindings["target_collection"])

        # a missing column only skips its update
        return await self._find_id(
            session, BOARD, columns_collection(bindings["target_collection"]), ref.value, numeric_fast_path=False
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def _gateway(self, system: str) -> LookupGateway:
        gateway = self.gateways.get(system)
        if gateway is None:
            raise PipelineError(f"No gateway configured for the {system} system")
        return gateway

    async def _find_id(
        self,
        session: ResolutionSession,
        system: str,
        collection: str,
        name: Any,
        numeric_fast_path: bool = True,
    ) -> Optional[Id]:
        if numeric_fast_path and is_numeric_id(name):
            return as_numeric_id(name)
        key = (system, str(collection), str(name).strip().lower())
        if key not in session.memo:
            session.memo[key] = await self._gateway(system).find_id_by_name(str(collection), str(name))
            if session.memo[key] is not None:
                session.emit(f"Resolved '{name}' in {collection} -> {session.memo[key]}")
        return session.memo[key]

    def _resolve_table(self, table: str) -> Id:
        if is_numeric_id(table):
            return as_numeric_id(table)
        if self.lookup_fields.knows_table(table):
            return table
        raise NotFoundError(table, "the database schema")

    async def _resolve_board(self, session: ResolutionSession, board: Any) -> Id:
        board_id = await self._find_id(session, BOARD, BOARDS, board)
        if board_id is None:
            raise NotFoundError(board, BOARDS)
        return board_id

    def _map_properties(self, system: str, profile: Mapping[str, Any], props: Dict[str, Any]) -> Dict[str, Any]:
        declared = {str(k).lower(): v for k, v in (profile.get("properties") or {}).items()}
        mapped: Dict[str, Any] = {}
        for key, value in props.items():
            if declared and key.lower() not in declared:
                logger.debug("Ignoring undeclared %s property '%s'", system, key)
                continue
            if key.lower() == "email" and isinstance(value, str):
                value = parse_address(value).email or value
            column = declared.get(key.lower(), key)
            mapped[column.lower() if system == BOARD else column] = value
        return mapped or dict(props)

    async def _resolve_entity(
        self,
        session: ResolutionSession,
        system: str,
        entity: Optional[EntityReference],
        default_collection: Id,
    ) -> Id:
        if entity is None:
            raise NotFoundError("item to act on", str(default_collection))
        props = {k: v for k, v in entity.properties.items() if v is not None and str(v).strip() != ""}
        if "id" in props and is_numeric_id(props["id"]):
            return as_numeric_id(props["id"])

        profile = (self.entity_profiles.get(system) or {}).get(entity.type) or {}
        collection = profile.get("collection")
        if not collection:
            collection = default_collection
        elif system == BOARD:
            collection = await self._resolve_board(session, collection)

        found = await self._gateway(system).list_candidates(
            collection, self._map_properties(system, profile, props), self.max_candidates
        )
        candidate_set = CandidateSet(
            reference=entity,
            collection=collection,
            candidates=normalize_candidates(found, self.max_candidates),
        )
        count = len(candidate_set.candidates)
        if count == 0:
            raise NotFoundError(candidate_set.describe(), str(collection))
        if count == 1:
            return candidate_set.candidates[0].id

        session.emit(f"{count} candidates match {candidate_set.describe()}")
        if session.disambiguate is None:
            raise AmbiguousReferenceError(candidate_set.describe(), count)
        return await session.disambiguate(candidate_set)

    # ------------------------------------------------------------------
    # Relational store
    # ------------------------------------------------------------------
    def _bind_labels(
        self, table: str, section: str, data: Optional[Dict[str, Any]], bindings: Mapping[str, Any]
    ) -> Optional[Dict[str, Any]]:
        if data is None:
            return None
        out: Dict[str, Any] = {}
        for key, value in data.items():
            lf = self.lookup_fields.match(table, key)
            if lf is None:
                out[key] = value
            else:
                out[lf.id_field] = bindings[f"{section}.{key}"]
        return out

    def _build_record(self, intent: Intent, bindings: Mapping[str, Any]) -> ResolvedOperation:
        table = intent.target_collection
        payload = self._bind_labels(table, "payload", intent.payload, bindings) or {}
        filter = self._bind_labels(table, "filter", intent.filter, bindings)
        if "entity" in bindings:
            filter = {**(filter or {}), "id": bindings["entity"]}
        return ResolvedOperation(
            kind=intent.kind, target_collection_id=bindings["target_collection"], payload=payload, filter=filter
        )

    # ------------------------------------------------------------------
    # Board system
    # ------------------------------------------------------------------
    def _build_board(
        self, intent: Intent, bindings: Mapping[str, Any], session: ResolutionSession
    ) -> List[BatchEntry]:
        board_id = bindings["target_collection"]

        if intent.kind == IntentKind.CREATE_ITEM:
            return [ResolvedOperation(
                kind=intent.kind, target_collection_id=board_id, payload={"name": intent.payload.get("name")}
            )]

        item_filter = {"item_id": bindings["entity"]}

        if intent.kind == IntentKind.UPDATE_ITEM_NAME:
            return [ResolvedOperation(
                kind=intent.kind,
                target_collection_id=board_id,
                payload={"name": intent.payload.get("name")},
                filter=item_filter,
            )]

        entries: List[BatchEntry] = []
        for index, update in enumerate(intent.updates):
            column_id = update.column_id or bindings.get(f"updates[{index}]")
            if not column_id:
                label = update.column_name or "(unnamed)"
                reason = f"Column '{label}' not found on board {board_id}"
                session.emit(f"{reason}; skipping this update", "warning")
                entries.append(SkippedOperation(kind=intent.kind, target_collection_id=board_id, reason=reason))
                continue
            entries.append(ResolvedOperation(
                kind=intent.kind,
                target_collection_id=board_id,
                payload={"column_id": column_id, "value": update.new_value},
                filter=dict(item_filter),
            ))
        return entries
