from pydantic import BaseModel


class CartChangedEvent(BaseModel):
    """Cross-tab notification that the durable cart record was rewritten."""
    tab_id: str
    key: str
    last_update: int  # epoch ms
    total_quantity: int = 0
