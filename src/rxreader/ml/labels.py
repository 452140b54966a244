"""Label set and static medicine catalog.

The label set maps classifier output indices to generic medicine names. The
catalog maps those names to descriptive metadata. Both are immutable once
constructed and are supplied to the recognition loop at startup.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

logger = logging.getLogger(__name__)


DEFAULT_MEDICINES: tuple[str, ...] = (
    "Azathioprine",
    "Ceftriaxone",
    "Chlorpromazine",
    "Ciprofloxacin",
    "Clarithromycin",
    "Dobutamine",
    "Fluoxetine",
    "Hydrochlorothiazide",
    "Hydrocortisone",
    "Hydroxyzine",
    "Ibuprofen",
    "Levothyroxine",
    "Lorazepam",
    "Metronidazole",
    "Prednisolone",
    "Quinine",
    "Risperidone",
    "Rituximab",
    "Salbutamol",
    "Tramadol",
)


class LabelSet:
    """Ordered, immutable index -> name mapping for one loaded model."""

    __slots__ = ("_names",)

    def __init__(self, names: Iterable[str]) -> None:
        cleaned = tuple(str(name).strip() for name in names)
        if not cleaned:
            raise ValueError("Label set must contain at least one name")
        if any(not name for name in cleaned):
            raise ValueError("Label names must be non-empty")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("Label names must be unique")
        self._names = cleaned

    @classmethod
    def default(cls) -> LabelSet:
        return cls(DEFAULT_MEDICINES)

    @classmethod
    def from_file(cls, path: str | Path) -> LabelSet:
        """Load a label set from disk.

        Supported formats:
            - ``.json`` holding a list of names, or an object keyed by index
              (``{"0": "Azathioprine", ...}``) covering 0..N-1 without gaps.
            - Any other extension: plain text, one name per line; blank lines
              are ignored.

        Raises:
            ValueError: If the file content is not a valid label set.
        """
        file_path = Path(path)
        text = file_path.read_text(encoding="utf-8")

        if file_path.suffix.lower() == ".json":
            data = json.loads(text)
            if isinstance(data, list):
                names = data
            elif isinstance(data, dict):
                indexed = {int(key): value for key, value in data.items()}
                if sorted(indexed) != list(range(len(indexed))):
                    raise ValueError(f"Label indices in {file_path} must cover 0..{len(indexed) - 1} without gaps")
                names = [indexed[i] for i in range(len(indexed))]
            else:
                raise ValueError(f"Unsupported label file layout in {file_path}")
        else:
            names = [line for line in text.splitlines() if line.strip()]

        labels = cls(names)
        logger.info("Loaded %d labels from %s", len(labels), file_path)
        return labels

    def name(self, index: int) -> str:
        """Return the name for ``index``.

        Raises:
            IndexError: If ``index`` is outside ``[0, N)``. Negative indices
                are rejected rather than wrapped.
        """
        if not 0 <= index < len(self._names):
            raise IndexError(f"Label index {index} out of range for {len(self._names)} labels")
        return self._names[index]

    def index(self, name: str) -> int:
        return self._names.index(name)

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    def __getitem__(self, index: int) -> str:
        return self.name(index)

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __repr__(self) -> str:
        return f"LabelSet({len(self._names)} labels)"


@dataclass(frozen=True)
class MedicineInfo:
    """Static metadata shown next to a recognized medicine."""

    name: str
    indication: str


_DEFAULT_INDICATIONS: dict[str, str] = {
    "Azathioprine": "Prevention of transplant rejection; rheumatoid arthritis",
    "Ceftriaxone": "Serious bacterial infections",
    "Chlorpromazine": "Schizophrenia and other psychotic disorders",
    "Ciprofloxacin": "Bacterial infections, including urinary tract infections",
    "Clarithromycin": "Respiratory tract infections; H. pylori eradication",
    "Dobutamine": "Short-term inotropic support in cardiac decompensation",
    "Fluoxetine": "Major depressive disorder; obsessive-compulsive disorder",
    "Hydrochlorothiazide": "Hypertension; oedema",
    "Hydrocortisone": "Adrenal insufficiency; inflammatory conditions",
    "Hydroxyzine": "Anxiety; pruritus",
    "Ibuprofen": "Pain, fever and inflammation",
    "Levothyroxine": "Hypothyroidism",
    "Lorazepam": "Anxiety disorders; status epilepticus",
    "Metronidazole": "Anaerobic bacterial and protozoal infections",
    "Prednisolone": "Inflammatory and autoimmune conditions",
    "Quinine": "Malaria",
    "Risperidone": "Schizophrenia; bipolar mania",
    "Rituximab": "Non-Hodgkin lymphoma; chronic lymphocytic leukaemia; rheumatoid arthritis",
    "Salbutamol": "Bronchospasm in asthma and COPD",
    "Tramadol": "Moderate to severe pain",
}


class MedicineCatalog:
    """Read-only name -> MedicineInfo lookup."""

    def __init__(self, entries: Mapping[str, MedicineInfo]) -> None:
        self._entries: Mapping[str, MedicineInfo] = MappingProxyType(dict(entries))

    @classmethod
    def default(cls) -> MedicineCatalog:
        return cls({name: MedicineInfo(name=name, indication=text) for name, text in _DEFAULT_INDICATIONS.items()})

    def get(self, name: str | None) -> MedicineInfo | None:
        if name is None:
            return None
        return self._entries.get(name)

    @property
    def entries(self) -> Mapping[str, MedicineInfo]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)
