from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from pilgrim_booking.db.models import Package, PackageDate
from pilgrim_booking.db.repositories.base import BaseRepository
from pilgrim_booking.utils.errors import NotFoundError


class PackageRepository(BaseRepository):
    def create(
        self,
        *,
        name: str,
        price: Decimal,
        agent_discount: Decimal | None = None,
        minimum_deposit: Decimal | None = None,
    ) -> Package:
        package = Package(
            name=name,
            price=price,
            agent_discount=agent_discount,
            minimum_deposit=minimum_deposit,
        )
        self.session.add(package)
        self.session.flush()
        return package

    def get(self, package_id: str, *, include_dates: bool = False) -> Package:
        if not include_dates:
            package = self.session.get(Package, package_id)
        else:
            stmt = (
                select(Package)
                .where(Package.id == package_id)
                .options(selectinload(Package.dates))
            )
            package = self.session.scalars(stmt).first()
        if not package:
            raise NotFoundError(f"Package {package_id} not found")
        return package

    def list_active(self) -> list[Package]:
        stmt = select(Package).where(Package.is_active.is_(True)).order_by(Package.name.asc())
        return list(self.session.scalars(stmt).all())

    def add_date(
        self,
        package_id: str,
        *,
        outbound: date,
        return_date: date | None = None,
        islamic_date: str | None = None,
    ) -> PackageDate:
        package_date = PackageDate(
            package_id=package_id,
            outbound=outbound,
            return_date=return_date,
            islamic_date=islamic_date,
        )
        self.session.add(package_date)
        self.session.flush()
        return package_date

    def get_date(self, package_date_id: str) -> PackageDate:
        package_date = self.session.get(PackageDate, package_date_id)
        if not package_date:
            raise NotFoundError(f"Package date {package_date_id} not found")
        return package_date
