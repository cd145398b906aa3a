from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select

from pilgrim_booking.db.enums import CommissionType
from pilgrim_booking.db.models import Agent, AgentClient
from pilgrim_booking.db.repositories.base import BaseRepository, normalize_enum_value, utcnow
from pilgrim_booking.utils.errors import NotFoundError


def _normalize_commission_type(commission_type: CommissionType | str) -> str:
    return normalize_enum_value(CommissionType, commission_type, "commission type")


class AgentRepository(BaseRepository):
    def create(
        self,
        *,
        user_id: str,
        business_name: str,
        commission_type: CommissionType | str = CommissionType.PERCENTAGE,
        commission_rate: Decimal | None = None,
    ) -> Agent:
        agent = Agent(
            user_id=user_id,
            business_name=business_name,
            commission_type=_normalize_commission_type(commission_type),
            commission_rate=commission_rate,
        )
        self.session.add(agent)
        self.session.flush()
        return agent

    def get(self, agent_id: str) -> Agent:
        agent = self.session.get(Agent, agent_id)
        if not agent:
            raise NotFoundError(f"Agent {agent_id} not found")
        return agent

    def find_for_user(self, agent_id: str, user_id: str) -> Agent | None:
        """
        What it does:
        - Looks up an agent row by id that also belongs to the given user.

        Why it matters:
        - Ownership checks must re-read the store; a client-supplied agent id
          alone proves nothing.
        """
        stmt = select(Agent).where(Agent.id == agent_id, Agent.user_id == user_id)
        return self.session.scalars(stmt).first()

    def get_by_user_id(self, user_id: str) -> Agent | None:
        stmt = select(Agent).where(Agent.user_id == user_id)
        return self.session.scalars(stmt).first()

    def update(self, agent_id: str, **fields) -> Agent:
        agent = self.get(agent_id)

        if "commission_type" in fields and fields["commission_type"] is not None:
            fields["commission_type"] = _normalize_commission_type(fields["commission_type"])

        for k, v in fields.items():
            if hasattr(agent, k):
                setattr(agent, k, v)
        agent.updated_at = utcnow()

        self.session.flush()
        return agent

    # --- Clients -------------------------------------------------------------

    def create_client(
        self,
        *,
        agent_id: str,
        full_name: str,
        gender: str | None = None,
        date_of_birth: date | None = None,
        passport_number: str | None = None,
        passport_expiry: date | None = None,
        phone: str | None = None,
    ) -> AgentClient:
        client = AgentClient(
            agent_id=agent_id,
            full_name=full_name,
            gender=gender,
            date_of_birth=date_of_birth,
            passport_number=passport_number,
            passport_expiry=passport_expiry,
            phone=phone,
        )
        self.session.add(client)
        self.session.flush()
        return client

    def get_client(self, client_id: str) -> AgentClient:
        client = self.session.get(AgentClient, client_id)
        if not client:
            raise NotFoundError(f"Agent client {client_id} not found")
        return client

    def find_client_of_agent(self, client_id: str, agent_id: str) -> AgentClient | None:
        stmt = select(AgentClient).where(
            AgentClient.id == client_id, AgentClient.agent_id == agent_id
        )
        return self.session.scalars(stmt).first()

    def list_clients(self, agent_id: str) -> list[AgentClient]:
        stmt = (
            select(AgentClient)
            .where(AgentClient.agent_id == agent_id)
            .order_by(AgentClient.full_name.asc())
        )
        return list(self.session.scalars(stmt).all())
