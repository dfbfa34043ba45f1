"""Record and Dataset Definitions.

This module defines the data model of the offline lookup store: patient
records, the schema variants that map upstream exports to records, the
dataset handle that owns one loaded collection, and the device identity
models persisted by the trust controller.

Security Impact:
    - Only the synthetic status field of a record is mutable after load
    - Validation payloads are kept verbatim, reserved fields are typed
    - Unknown column names raise KeyError instead of silently reading empty

Architecture:
    - Pure domain models with no infrastructure dependencies beyond Pydantic
    - Two datasets are fully independent: no shared state, no foreign keys
    - Joining across datasets happens at the query boundary (see services/patient_lookup.py)
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

STATUS_COLUMN = "status"
STATUS_TRUE = "true"
STATUS_FALSE = "false"

BOM = "\ufeff"


def normalize_header_text(text: str) -> str:
    """Strip BOM, remove all whitespace and lower-case a header line or cell."""
    return "".join(text.replace(BOM, "").split()).lower()


def format_status(value: bool) -> str:
    return STATUS_TRUE if value else STATUS_FALSE


class Record(Mapping):
    """One patient row: column name -> string value.

    The key set is exactly the owning dataset's header, fixed at load time.
    Reading an unknown column raises KeyError so a misspelled column name is
    noticed instead of quietly returning an empty value; use get() for
    optional columns.

    Only the synthetic status field can change after load.
    """

    __slots__ = ("_fields",)

    def __init__(self, fields: Dict[str, str]):
        self._fields = dict(fields)
        self._fields.setdefault(STATUS_COLUMN, STATUS_FALSE)

    def __getitem__(self, key: str) -> str:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"Record({self._fields!r})"

    @property
    def status(self) -> bool:
        """Whether the pending activity was marked as handled."""
        return self._fields.get(STATUS_COLUMN, STATUS_FALSE).strip().lower() == STATUS_TRUE

    @status.setter
    def status(self, value: bool) -> None:
        self._fields[STATUS_COLUMN] = format_status(value)

    def values_in(self, header: Sequence[str]) -> List[str]:
        """Field values in header order, missing fields as empty string."""
        return [self._fields.get(column, "") for column in header]

    def to_dict(self) -> Dict[str, str]:
        return dict(self._fields)


# ============================================================================
# Schema Variants
# ============================================================================

class DatasetSchema:
    """Maps one upstream export format to records.

    The load algorithm is shared; variants differ only in how the header
    line is recognized, which column is the identity key, and how a row's
    cells become record fields.

    Attributes:
        name: Human-readable variant name
        id_marker: Normalized text identifying the header line
    """

    name = "base"
    id_marker = ""

    def is_header_line(self, line: str) -> bool:
        return self.id_marker in normalize_header_text(line)

    def build_header(self, source_columns: Sequence[str]) -> List[str]:
        raise NotImplementedError

    def id_column(self, header: Sequence[str]) -> Optional[str]:
        raise NotImplementedError

    def build_record(self, source_columns: Sequence[str], cells: Sequence[str], header: Sequence[str]) -> Record:
        raise NotImplementedError


class SourceHeaderSchema(DatasetSchema):
    """Variant A: the header is taken verbatim from the source row.

    Any column name is accepted. The identity column is the first column
    whose normalized name contains "numeroid".
    """

    name = "source-header"
    id_marker = "numeroid"

    def build_header(self, source_columns: Sequence[str]) -> List[str]:
        header = [column.replace(BOM, "").strip() for column in source_columns]
        if STATUS_COLUMN not in header:
            header.append(STATUS_COLUMN)
        return header

    def id_column(self, header: Sequence[str]) -> Optional[str]:
        for column in header:
            if self.id_marker in normalize_header_text(column):
                return column
        return None

    def build_record(self, source_columns: Sequence[str], cells: Sequence[str], header: Sequence[str]) -> Record:
        # Zip by position: short rows leave trailing fields empty, extra cells are dropped
        fields = {column: (cells[index] if index < len(cells) else "") for index, column in enumerate(header)}
        if not fields.get(STATUS_COLUMN):
            fields[STATUS_COLUMN] = STATUS_FALSE
        return Record(fields)


class SigiresPatient(BaseModel):
    """Fixed output shape for Variant B exports.

    Field aliases are the source column names looked up case-insensitively
    in the discovered header. Missing source columns leave the field empty.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    TIPO_ID: str = Field("", alias="TIPO_ID")
    NUMERO_ID: str = Field("", alias="NUMERO_ID")
    PRIMER_APELLIDO: str = Field("", alias="PRIMER_APELLIDO")
    SEGUNDO_APELLIDO: str = Field("", alias="SEGUNDO_APELLIDO")
    PRIMER_NOMBRE: str = Field("", alias="PRIMER_NOMBRE")
    SEGUNDO_NOMBRE: str = Field("", alias="SEGUNDO_NOMBRE")
    FECHA_NACIMIENTO: str = Field("", alias="FECHA_NACIMIENTO")
    SEXO: str = Field("", alias="SEXO")
    EDAD: str = Field("", alias="EDAD")
    TELEFONO: str = Field("", alias="TELEFONO")
    REGIMEN: str = Field("", alias="REGIMEN")
    CONTROL_PLACA: str = Field("", alias="Control de Placa Bacteriana")
    CONTROL_RN: str = Field("", alias="Control Recién Nacido")
    CRECIMIENTO_DESARROLLO: str = Field("", alias="Consulta de Crecimiento y Desarrollo Primera vez")
    CONSULTA_JOVEN: str = Field("", alias="Consulta de Joven Primera vez")
    CONSULTA_ADULTO: str = Field("", alias="Consulta de Adulto Primera vez")
    status: bool = False

    @classmethod
    def output_fields(cls) -> List[str]:
        return [name for name in cls.model_fields if name != STATUS_COLUMN]

    @classmethod
    def source_columns(cls) -> Dict[str, str]:
        """Output field name -> expected source column name."""
        return {
            name: (info.alias or name)
            for name, info in cls.model_fields.items()
            if name != STATUS_COLUMN
        }

    @classmethod
    def from_record(cls, record: Record) -> 'SigiresPatient':
        data = {name: record.get(name, "") for name in cls.output_fields()}
        return cls(status=record.status, **data)


class FixedColumnSchema(DatasetSchema):
    """Variant B: a fixed explicit column list mapped to a fixed record shape.

    Extra source columns are ignored. A missing expected column leaves that
    output field empty rather than failing the whole load.
    """

    name = "fixed-columns"
    id_marker = "numero_id"
    id_field = "NUMERO_ID"

    def __init__(self, model: type = SigiresPatient):
        self.model = model

    def is_header_line(self, line: str) -> bool:
        # Whole cell only: NUMERO_IDENTIFICACION is not the identity column
        return self.id_marker in re.split(r"[,;]", normalize_header_text(line))

    def build_header(self, source_columns: Sequence[str]) -> List[str]:
        return self.model.output_fields() + [STATUS_COLUMN]

    def id_column(self, header: Sequence[str]) -> Optional[str]:
        return self.id_field if self.id_field in header else None

    def _column_indexes(self, source_columns: Sequence[str]) -> Dict[str, int]:
        positions = {}
        for index, column in enumerate(source_columns):
            positions.setdefault(column.replace(BOM, "").strip().upper(), index)
        return positions

    def build_record(self, source_columns: Sequence[str], cells: Sequence[str], header: Sequence[str]) -> Record:
        positions = self._column_indexes(source_columns)
        data: Dict[str, Any] = {}
        for output_field, source_column in self.model.source_columns().items():
            index = positions.get(source_column.upper())
            if index is None:
                # Files re-written by persist() carry the output field names
                index = positions.get(output_field.upper())
            data[output_field] = cells[index] if index is not None and index < len(cells) else ""
        status_index = positions.get(STATUS_COLUMN.upper())
        status_cell = cells[status_index] if status_index is not None and status_index < len(cells) else ""
        patient = self.model(status=status_cell.strip().lower() == STATUS_TRUE, **data)
        fields = patient.model_dump(exclude={STATUS_COLUMN})
        fields[STATUS_COLUMN] = format_status(patient.status)
        return Record(fields)


VARIANT_A = SourceHeaderSchema()
VARIANT_B = FixedColumnSchema()


# ============================================================================
# Dataset Handle
# ============================================================================

@dataclass(frozen=True)
class DatasetContents:
    """Everything a load produces, swapped into a Dataset in one assignment."""

    header: Tuple[str, ...] = ()
    records: Tuple[Record, ...] = ()
    delimiter: str = ","
    id_column: Optional[str] = None


@dataclass
class Dataset:
    """One independently-loaded, independently-expiring patient collection.

    The handle is passed explicitly to every RecordStore operation; there is
    no module-level dataset state.

    Attributes:
        tag: Dataset tag (also used in export file names)
        schema: Variant used to turn source rows into records
        backing_path: File the collection is loaded from and persisted to
        expires_at: Point in time after which the dataset is stale
        contents: Header, records and delimiter from the last successful load
    """

    tag: str
    schema: DatasetSchema
    backing_path: Optional[Path] = None
    expires_at: Optional[datetime] = None
    loaded_at: Optional[datetime] = None
    contents: DatasetContents = field(default_factory=DatasetContents)

    @property
    def header(self) -> List[str]:
        return list(self.contents.header)

    @property
    def records(self) -> List[Record]:
        return list(self.contents.records)

    @property
    def delimiter(self) -> str:
        return self.contents.delimiter

    @property
    def id_column(self) -> Optional[str]:
        return self.contents.id_column

    def is_loaded(self) -> bool:
        return bool(self.contents.header)

    def clear(self) -> None:
        self.contents = DatasetContents()


# ============================================================================
# Device Identity
# ============================================================================

class ValidationPayload(BaseModel):
    """Validation response issued by the remote service.

    Kept verbatim (extra fields allowed); only the password echo and the
    institution metadata are read by the core.
    """

    model_config = ConfigDict(extra="allow")

    password: Optional[str] = None
    name_ips: Optional[str] = None
    name_municipality: Optional[str] = None
    name_department: Optional[str] = None
    phone_number: Optional[str] = None
    mensaje: Optional[str] = None

    @field_validator("password", "phone_number", mode="before")
    @classmethod
    def coerce_to_str(cls, v: Any) -> Optional[str]:
        if v is None:
            return v
        return str(v)

    def institution_metadata(self) -> Dict[str, str]:
        return {
            "name_ips": self.name_ips or "",
            "name_municipality": self.name_municipality or "",
            "name_department": self.name_department or "",
        }


class DeviceIdentity(BaseModel):
    """Registration and validation state of this device."""

    institution_code: Optional[str] = None
    device_id: Optional[str] = None
    registration_key: Optional[str] = None
    backend_device_id: Optional[str] = None
    validation_payload: Optional[ValidationPayload] = None
    validation_key: Optional[str] = None
    phone_number: Optional[str] = None
    validated: bool = False

    def is_registered(self) -> bool:
        return bool(self.institution_code) and bool(self.device_id)
