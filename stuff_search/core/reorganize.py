"""
Drag-and-drop reorganization: moving items between containers and nesting
containers under one another. Embeddings are never touched here.
"""

from typing import Optional

from .errors import ContainerNotFound


class ReorganizationCoordinator:
    def __init__(self, store):
        self.store = store

    def move_item(self, item_id: int, new_container_id: int) -> None:
        """Reassign an item to `new_container_id`.

        The target is checked up front for a clean ContainerNotFound; the
        store checks again inside its transaction, so a container deleted in
        between still fails the move instead of leaving a dangling reference.
        """
        if self.store.get_container(new_container_id) is None:
            raise ContainerNotFound(new_container_id)
        self.store.move_item(item_id, new_container_id)

    def move_container(self, container_id: int, new_parent_id: Optional[int]) -> None:
        """Nest a container under `new_parent_id`, or make it a root with None."""
        if self.store.get_container(container_id) is None:
            raise ContainerNotFound(container_id)
        if new_parent_id is not None and self.store.get_container(new_parent_id) is None:
            raise ContainerNotFound(new_parent_id)
        self.store.set_container_parent(container_id, new_parent_id)
