"""Read-only course catalog model.

The catalog is owned elsewhere; the enrollment engine only needs the
publish flag and price (for enroll), the module/item structure (for
completion totals and detail enrichment), and the counters it updates
as side effects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal
from uuid import uuid4

ItemType = Literal["video", "document"]


@dataclass(frozen=True, slots=True)
class ModuleItem:
    id: str
    title: str
    type: ItemType = "video"
    duration: int = 0  # minutes, videos only
    position: int = 0

    @staticmethod
    def new(
        *, title: str, type: ItemType = "video", duration: int = 0, position: int = 0
    ) -> ModuleItem:
        return ModuleItem(
            id=str(uuid4()), title=title, type=type, duration=duration, position=position
        )


@dataclass(frozen=True, slots=True)
class CourseModule:
    id: str
    title: str
    position: int = 0
    items: tuple[ModuleItem, ...] = ()

    @staticmethod
    def new(
        *, title: str, position: int = 0, items: tuple[ModuleItem, ...] = ()
    ) -> CourseModule:
        return CourseModule(id=str(uuid4()), title=title, position=position, items=items)


@dataclass(frozen=True, slots=True)
class Course:
    id: str
    title: str
    price: float = 0.0
    is_published: bool = False
    modules: tuple[CourseModule, ...] = ()
    enrollment_count: int = 0
    rating_average: float = 0.0
    rating_count: int = 0

    @staticmethod
    def new(
        *,
        title: str,
        price: float = 0.0,
        is_published: bool = False,
        modules: tuple[CourseModule, ...] = (),
    ) -> Course:
        return Course(
            id=str(uuid4()),
            title=title,
            price=price,
            is_published=is_published,
            modules=modules,
        )

    @property
    def total_items(self) -> int:
        return sum(len(m.items) for m in self.modules)

    def item_ids(self) -> set[str]:
        return {item.id for m in self.modules for item in m.items}

    def locate_item(self, item_id: str) -> tuple[CourseModule, ModuleItem] | None:
        for module in self.modules:
            for item in module.items:
                if item.id == item_id:
                    return module, item
        return None
