import typing

import pydantic
import structlog

RECORD_SEP_BIN = b'\x1d'
FIELD_SEP = 30
FIELD_SEP_BIN = b'\x1e'
SUBFIELD_SEP_BIN = b'\x1f'
RESERVED_CHARS = ('\x1d', '\x1e', '\x1f')
ENCODING = 'ascii'
DATA_ENCODING = 'utf-8'
LEADER_LENGTH = 24
DIRECTORY_ENTRY_LENGTH = 12
RECORD_LENGTH_WIDTH = 5
BASE_ADDRESS_WIDTH = 5
FIELD_LENGTH_WIDTH = 4
FIELD_START_WIDTH = 5
DEFAULT_LEADER = '00000nam a2200000 a 4500'
UTF8_CODING_SCHEME = 'a'

logger = structlog.get_logger()


class MarcError(ValueError):
    """Base error for the codec."""


class MalformedLeader(MarcError):
    """Leader length or base address is not a positive fixed-width number."""


class TruncatedRecord(MarcError):
    """Declared extent runs past the available bytes."""


class MalformedDirectory(MarcError):
    """A directory entry cannot be parsed or written."""


class DirectoryOverflow(MalformedDirectory):
    """No field terminator found within the directory span."""


class FieldWidthOverflow(MarcError):
    """A length or offset does not fit its fixed digit width."""


class ReservedByteError(MarcError):
    """Field content contains a structural delimiter byte."""


def is_control_tag(tag: str) -> bool:
    return tag.isascii() and tag.isdigit() and int(tag) < 10


class Leader(pydantic.BaseModel):
    record_length: int = 0
    base_address: int = 0
    text: str = pydantic.Field(default=DEFAULT_LEADER, min_length=LEADER_LENGTH, max_length=LEADER_LENGTH)

    @pydantic.field_validator('text')
    @classmethod
    def text_is_ascii(cls, value: str) -> str:
        if not value.isascii():
            raise ValueError(f'leader {value!r} is not ASCII')
        return value

    @property
    def character_coding_scheme(self) -> str:
        return self.text[9]

    def render(self, record_length: int, base_address: int) -> bytes:
        length_str = _pad(record_length, RECORD_LENGTH_WIDTH, 'record length')
        base_str = _pad(base_address, BASE_ADDRESS_WIDTH, 'base address')
        text = length_str + self.text[5:12] + base_str + self.text[17:]
        return text.encode(ENCODING)


class DirectoryEntry(pydantic.BaseModel):
    tag: str
    length: int
    start: int


class SubField(pydantic.BaseModel):
    code: str = pydantic.Field(min_length=1, max_length=1)
    data: str


class ControlField(pydantic.BaseModel):
    tag: str = pydantic.Field(min_length=3, max_length=3)
    text: str

    @pydantic.field_validator('tag')
    @classmethod
    def tag_is_control(cls, value: str) -> str:
        if not is_control_tag(value):
            raise ValueError(f'tag {value!r} is not a control field tag')
        return value

    @property
    def is_control(self) -> bool:
        return True


class DataField(pydantic.BaseModel):
    tag: str = pydantic.Field(min_length=3, max_length=3)
    ind1: str = pydantic.Field(default=' ', min_length=1, max_length=1)
    ind2: str = pydantic.Field(default=' ', min_length=1, max_length=1)
    subfields: list[SubField] = []

    @pydantic.field_validator('tag')
    @classmethod
    def tag_is_not_control(cls, value: str) -> str:
        if is_control_tag(value):
            raise ValueError(f'tag {value!r} belongs to a control field')
        return value

    @property
    def is_control(self) -> bool:
        return False

    def get(self, code: str) -> str | None:
        for subfield in self.subfields:
            if subfield.code == code:
                return subfield.data
        return None


Field = ControlField | DataField


class Record(pydantic.BaseModel):
    leader: Leader = Leader()
    fields: list[Field] = []

    def get_fields(self, *tags: str) -> list[Field]:
        return [f for f in self.fields if not tags or f.tag in tags]

    def control_field(self, tag: str) -> str | None:
        for field in self.fields:
            if field.tag == tag and isinstance(field, ControlField):
                return field.text
        return None

    def get_subfields(self, tag: str, code: str) -> list[str]:
        values = []
        for field in self.fields:
            if field.tag != tag or not isinstance(field, DataField):
                continue
            values.extend(sf.data for sf in field.subfields if sf.code == code)
        return values


def _digits(buffer: bytes) -> int | None:
    # bytes.isdigit only accepts ASCII 0-9
    if not buffer or not buffer.isdigit():
        return None
    return int(buffer)


def _text(buffer: bytes) -> str:
    return buffer.decode(DATA_ENCODING, errors='replace')


def _pad(value: int, width: int, what: str) -> str:
    if value < 0 or value >= 10 ** width:
        raise FieldWidthOverflow(f'{what} {value} does not fit in {width} digits')
    return str(value).zfill(width)


def parse_leader(buffer: bytes) -> Leader:
    if len(buffer) < LEADER_LENGTH:
        raise MalformedLeader(f'leader needs {LEADER_LENGTH} bytes, got {len(buffer)}')
    length = _digits(buffer[0:5])
    if length is None or length <= 0:
        raise MalformedLeader(f'invalid record length {buffer[0:5]!r}')
    base_address = _digits(buffer[12:17])
    if base_address is None or base_address <= LEADER_LENGTH:
        raise MalformedLeader(f'invalid base address {buffer[12:17]!r}')
    if not buffer[:LEADER_LENGTH].isascii():
        raise MalformedLeader(f'leader {buffer[:LEADER_LENGTH]!r} is not ASCII')

    text = buffer[:LEADER_LENGTH].decode(ENCODING)
    leader = Leader(record_length=length, base_address=base_address, text=text)
    if leader.character_coding_scheme != UTF8_CODING_SCHEME:
        logger.debug('Leader does not declare UTF-8, decoding as UTF-8 anyway',
                     coding_scheme=leader.character_coding_scheme)
    return leader


def parse_directory(buffer: bytes, base_address: int) -> list[DirectoryEntry]:
    # the terminator must sit at or before base_address - 1
    end = base_address - 1
    entries = []
    offset = LEADER_LENGTH

    while True:
        if offset > end:
            raise DirectoryOverflow(f'no directory terminator before offset {base_address}')
        if buffer[offset] == FIELD_SEP:
            break
        if offset + DIRECTORY_ENTRY_LENGTH > end:
            raise DirectoryOverflow(f'directory entry at {offset} crosses base address {base_address}')

        entry_buf = buffer[offset: offset + DIRECTORY_ENTRY_LENGTH]
        field_len = _digits(entry_buf[3:7])
        field_start = _digits(entry_buf[7:12])
        if field_len is None or field_start is None:
            raise MalformedDirectory(f'invalid directory entry {entry_buf!r} at {offset}')
        tag = entry_buf[0:3].decode(ENCODING, errors='replace')
        entries.append(DirectoryEntry(tag=tag, length=field_len, start=field_start))
        offset += DIRECTORY_ENTRY_LENGTH

    return entries


def parse_subfields(tag: str, buffer: bytes) -> list[SubField]:
    chunks = buffer.split(SUBFIELD_SEP_BIN)
    if chunks[0]:
        logger.debug('Dropping text before first subfield delimiter', tag=tag, text=_text(chunks[0]))

    subfields = []
    for chunk in chunks[1:]:
        if not chunk:
            continue
        text = _text(chunk)
        subfields.append(SubField(code=text[0], data=text[1:]))
    return subfields


def parse_fields(buffer: bytes, directory: list[DirectoryEntry]) -> list[Field]:
    fields = []
    for entry in directory:
        if entry.start + entry.length > len(buffer):
            raise TruncatedRecord(f'field {entry.tag} at {entry.start}+{entry.length} '
                                  f'runs past data region of {len(buffer)} bytes')
        value_buf = buffer[entry.start: entry.start + entry.length]
        if value_buf.endswith(FIELD_SEP_BIN):
            value_buf = value_buf[:-1]

        if is_control_tag(entry.tag):
            fields.append(ControlField(tag=entry.tag, text=_text(value_buf)))
            continue

        ind1 = _text(value_buf[0:1]) or ' '
        ind2 = _text(value_buf[1:2]) or ' '
        subfields = parse_subfields(entry.tag, value_buf[2:])
        fields.append(DataField(tag=entry.tag, ind1=ind1, ind2=ind2, subfields=subfields))
    return fields


def decode_record(buffer: bytes) -> Record:
    buffer = bytes(buffer)
    leader = parse_leader(buffer)
    if leader.record_length > len(buffer):
        raise TruncatedRecord(f'record declares {leader.record_length} bytes, got {len(buffer)}')
    buffer = buffer[:leader.record_length]
    if leader.base_address > len(buffer):
        raise TruncatedRecord(f'base address {leader.base_address} past record end {len(buffer)}')

    directory = parse_directory(buffer, leader.base_address)

    if buffer.endswith(RECORD_SEP_BIN):
        fields_buf = buffer[leader.base_address:-1]
    else:
        logger.warning('Record does not end with a record terminator', length=len(buffer))
        fields_buf = buffer[leader.base_address:]
    fields = parse_fields(fields_buf, directory)

    return Record(leader=leader, fields=fields)


def decode(buffer: bytes) -> list[Record]:
    buffer = bytes(buffer)
    records = []
    offset = 0

    while offset < len(buffer):
        try:
            leader = parse_leader(buffer[offset: offset + LEADER_LENGTH])
            if offset + leader.record_length > len(buffer):
                raise TruncatedRecord(f'record declares {leader.record_length} bytes, '
                                      f'{len(buffer) - offset} remain')
            record = decode_record(buffer[offset: offset + leader.record_length])
        except MarcError as e:
            logger.warning('Stopped decoding stream', offset=offset, decoded=len(records), error=str(e))
            break
        records.append(record)
        offset += leader.record_length

    return records


def _check_value(tag: str, value: str, width: int | None = None):
    if width is not None and len(value.encode(DATA_ENCODING)) != width:
        raise MarcError(f'field {tag}: {value!r} must be {width} byte(s)')
    for char in RESERVED_CHARS:
        if char in value:
            raise ReservedByteError(f'field {tag} contains reserved byte {char!r}')


def build_field(tag: str, ind1: str = ' ', ind2: str = ' ',
                subfields: typing.Iterable[SubField | tuple[str, str]] = (), text: str = '') -> bytes:
    subfields = list(subfields)
    if is_control_tag(tag):
        if ind1 != ' ' or ind2 != ' ' or subfields:
            raise MarcError(f'control field {tag} takes no indicators or subfields')
        _check_value(tag, text)
        return text.encode(DATA_ENCODING) + FIELD_SEP_BIN

    if text:
        raise MarcError(f'data field {tag} takes subfields, not text')
    _check_value(tag, ind1, 1)
    _check_value(tag, ind2, 1)
    content = ind1 + ind2
    for subfield in subfields:
        code, data = subfield if isinstance(subfield, tuple) else (subfield.code, subfield.data)
        _check_value(tag, code, 1)
        _check_value(tag, data)
        content += RESERVED_CHARS[2] + code + data
    return content.encode(DATA_ENCODING) + FIELD_SEP_BIN


def _build(field: Field) -> bytes:
    if isinstance(field, ControlField):
        return build_field(field.tag, text=field.text)
    return build_field(field.tag, field.ind1, field.ind2, field.subfields)


def build_record(fields: typing.Iterable[Field], leader: Leader | None = None) -> bytes:
    if leader is None:
        leader = Leader()

    directory = b''
    data = b''
    offset = 0
    for field in fields:
        if len(field.tag) != 3 or not field.tag.isascii():
            raise MalformedDirectory(f'tag {field.tag!r} is not 3 ASCII characters')
        _check_value(field.tag, field.tag)
        content = _build(field)
        length_str = _pad(len(content), FIELD_LENGTH_WIDTH, f'field {field.tag} length')
        start_str = _pad(offset, FIELD_START_WIDTH, f'field {field.tag} offset')
        directory += (field.tag + length_str + start_str).encode(ENCODING)
        data += content
        offset += len(content)
    directory += FIELD_SEP_BIN

    base_address = LEADER_LENGTH + len(directory)
    total_length = base_address + len(data) + 1
    return leader.render(total_length, base_address) + directory + data + RECORD_SEP_BIN


def encode_record(record: Record) -> bytes:
    return build_record(record.fields, record.leader)


def encode(records: typing.Iterable[Record]) -> bytes:
    return b''.join(encode_record(record) for record in records)
