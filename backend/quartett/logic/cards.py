"""
Card model and the default card catalog.
"""

from pydantic import BaseModel, ConfigDict, Field

CATEGORIES = ("charisma", "leadership", "influence", "integrity", "trickery", "wealth")


class Card(BaseModel):
    """A catalog entry. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    categories: dict[str, int | float]

    def value_of(self, category: str) -> int | float:
        return self.categories[category]

    def has_category(self, category: str) -> bool:
        return category in self.categories


class CardIdentity(BaseModel):
    """Card reduced to what may be shown without revealing its values."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str


def _card(card_id: str, name: str, *values: int) -> Card:
    return Card(id=card_id, name=name, categories=dict(zip(CATEGORIES, values, strict=True)))


DEFAULT_DECK: tuple[Card, ...] = (
    _card("trump", "Donald Trump", 9, 6, 9, 2, 10, 9),
    _card("obama", "Barack Obama", 10, 9, 9, 8, 3, 6),
    _card("erdogan", "Recep Tayyip Erdoğan", 7, 8, 8, 3, 8, 7),
    _card("lauterbach", "Karl Lauterbach", 5, 6, 6, 7, 3, 4),
    _card("merkel", "Angela Merkel", 6, 8, 8, 7, 4, 6),
    _card("thunberg", "Greta Thunberg", 7, 6, 7, 9, 2, 2),
    _card("selenskyj", "Wolodymyr Selenskyj", 8, 9, 9, 7, 5, 5),
    _card("steinbrueck", "Peer Steinbrück", 5, 6, 5, 6, 3, 4),
    _card("putin", "Wladimir Putin", 7, 9, 10, 2, 10, 10),
    _card("soeder", "Markus Söder", 7, 7, 7, 5, 6, 5),
)
