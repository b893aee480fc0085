# legv8_core.py
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional, Tuple, Iterable, Iterator

logger = logging.getLogger(__name__)

DEFAULT_BASE_PC = 96
DEFAULT_MAX_CYCLES = 10000
NUM_REGISTERS = 32
WORD_SIZE = 8
INSTR_BITS = 32

MASK64 = (1 << 64) - 1
SEPARATOR = '=' * 20


class Format(str, Enum):
    B = 'B'
    CB = 'CB'
    R = 'R'
    I = 'I'
    IM = 'IM'
    SHIFT = 'SHIFT'
    D = 'D'
    NOP = 'NOP'
    BREAK = 'BREAK'
    UNKNOWN = 'UNKNOWN'


class Mnemonic(str, Enum):
    B = 'B'
    CBZ = 'CBZ'
    CBNZ = 'CBNZ'
    AND = 'AND'
    ADD = 'ADD'
    SUB = 'SUB'
    EOR = 'EOR'
    ORR = 'ORR'
    ADDI = 'ADDI'
    SUBI = 'SUBI'
    MOVZ = 'MOVZ'
    MOVK = 'MOVK'
    LSR = 'LSR'
    LSL = 'LSL'
    ASR = 'ASR'
    STUR = 'STUR'
    LDUR = 'LDUR'
    NOP = 'NOP'
    BREAK = 'BREAK'


R_OPCODES = {
    '10001010000': Mnemonic.AND,
    '10001011000': Mnemonic.ADD,
    '10101010000': Mnemonic.ORR,
    '11001011000': Mnemonic.SUB,
    '11101010000': Mnemonic.EOR,
}
SHIFT_OPCODES = {
    '11010011010': Mnemonic.LSR,
    '11010011011': Mnemonic.LSL,
    '11010011100': Mnemonic.ASR,
}
D_OPCODES = {
    '11111000000': Mnemonic.STUR,
    '11111000010': Mnemonic.LDUR,
}
I_OPCODES = {
    '1001000100': Mnemonic.ADDI,
    '1101000100': Mnemonic.SUBI,
}
B_OPCODES = {
    '000101': Mnemonic.B,
}
CB_OPCODES = {
    '10110100': Mnemonic.CBZ,
    '10110101': Mnemonic.CBNZ,
}
IM_OPCODES = {
    '110100101': Mnemonic.MOVZ,
    '111100101': Mnemonic.MOVK,
}
WHOLE_OPCODES = {
    '0' * 32: (Mnemonic.NOP, Format.NOP),
    '11111110110111101111111111100111': (Mnemonic.BREAK, Format.BREAK),
}

# Each format is probed at its own prefix length, in this order.
PREFIX_TABLES = [
    (11, Format.R, R_OPCODES),
    (11, Format.SHIFT, SHIFT_OPCODES),
    (11, Format.D, D_OPCODES),
    (10, Format.I, I_OPCODES),
    (6, Format.B, B_OPCODES),
    (8, Format.CB, CB_OPCODES),
    (9, Format.IM, IM_OPCODES),
]

FORMAT_OF: Dict[Mnemonic, Format] = {
    mnemonic: fmt for _, fmt, table in PREFIX_TABLES for mnemonic in table.values()
}
FORMAT_OF.update({mnemonic: fmt for mnemonic, fmt in WHOLE_OPCODES.values()})

# (name, width, kind); widths of every layout sum to 32
LAYOUTS = {
    Format.R: (('opcode', 11, 'opcode'), ('rm', 5, 'reg'), ('shamt', 6, 'shamt'),
               ('rn', 5, 'reg'), ('rd', 5, 'reg')),
    Format.I: (('opcode', 10, 'opcode'), ('imm', 12, 'simm'), ('rn', 5, 'reg'), ('rd', 5, 'reg')),
    Format.D: (('opcode', 11, 'opcode'), ('address', 9, 'uimm'), ('op2', 2, 'op2'),
               ('rn', 5, 'reg'), ('rt', 5, 'reg')),
    Format.B: (('opcode', 6, 'opcode'), ('offset', 26, 'simm')),
    Format.CB: (('opcode', 8, 'opcode'), ('offset', 19, 'simm'), ('rt', 5, 'reg')),
    Format.IM: (('opcode', 9, 'opcode'), ('shift', 2, 'shift'), ('field', 16, 'uimm'), ('rd', 5, 'reg')),
    Format.SHIFT: (('opcode', 11, 'opcode'), ('rm', 5, 'reg'), ('shamt', 6, 'shamt'),
                   ('rn', 5, 'reg'), ('rd', 5, 'reg')),
}

# display-only bit groupings for instructions without operand fields
BREAK_GROUPS = (1, 5, 5, 5, 5, 5, 6)
UNKNOWN_GROUPS = (8, 3, 5, 5, 5, 6)


def sign_extend(value: int, width: int) -> int:
    if value & (1 << (width - 1)):
        return value - (1 << width)
    return value


def to_s64(value: int) -> int:
    value &= MASK64
    return value - (1 << 64) if value >> 63 else value


def split_bits(bits: str, widths: Iterable[int]) -> List[str]:
    out = []
    pos = 0
    for w in widths:
        out.append(bits[pos:pos + w])
        pos += w
    return out


@dataclass(frozen=True)
class Field:
    name: str
    bits: str
    kind: str
    value: int

    @property
    def width(self) -> int:
        return len(self.bits)


@dataclass
class Decoded:
    bits: str
    fmt: Format
    mnemonic: Optional[Mnemonic] = None
    fields: List[Field] = field(default_factory=list)
    diagnostic: Optional[str] = None

    def __getitem__(self, name: str) -> int:
        return self.get_field(name).value

    def get_field(self, name: str) -> Field:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(name)

    def groups(self) -> List[str]:
        if self.fields:
            return [f.bits for f in self.fields]
        if self.fmt == Format.BREAK:
            return split_bits(self.bits, BREAK_GROUPS)
        if self.fmt == Format.UNKNOWN:
            return split_bits(self.bits, UNKNOWN_GROUPS)
        return [self.bits]


def parse_line(s: str) -> Optional[str]:
    s = s.strip()
    if len(s) != INSTR_BITS or any(c not in '01' for c in s):
        return None
    return s


def classify(bits: str) -> Tuple[Optional[Mnemonic], Format]:
    """Map a 32-bit string to its mnemonic and format family.

    Whole-word literals (NOP, BREAK) win over any prefix match. Otherwise each
    format table is looked up with its own prefix length; there is no global
    shortest- or longest-prefix priority.
    """
    if bits in WHOLE_OPCODES:
        return WHOLE_OPCODES[bits]
    for length, fmt, table in PREFIX_TABLES:
        mnemonic = table.get(bits[:length])
        if mnemonic is not None:
            return mnemonic, fmt
    return None, Format.UNKNOWN


def decode(bits: str) -> Decoded:
    mnemonic, fmt = classify(bits)
    if fmt not in LAYOUTS:
        return Decoded(bits=bits, fmt=fmt, mnemonic=mnemonic)

    pos = 0
    fields = []
    for name, width, kind in LAYOUTS[fmt]:
        raw = bits[pos:pos + width]
        pos += width
        value = int(raw, 2)
        if kind == 'simm':
            value = sign_extend(value, width)
        fields.append(Field(name=name, bits=raw, kind=kind, value=value))
    d = Decoded(bits=bits, fmt=fmt, mnemonic=mnemonic, fields=fields)

    # the R-format ALU operations in this subset all carry shamt == 0
    if fmt == Format.R and d['shamt'] != 0:
        d.diagnostic = f"unrecognized shamt {d.get_field('shamt').bits} for {mnemonic.value}"
    return d


def format_operands(d: Decoded) -> str:
    if d.fmt == Format.R:
        return f"R{d['rd']}, R{d['rn']}, R{d['rm']}"
    if d.fmt == Format.I:
        return f"R{d['rd']}, R{d['rn']}, #{d['imm']}"
    if d.fmt == Format.SHIFT:
        return f"R{d['rd']}, R{d['rn']}, #{d['shamt']}"
    if d.fmt == Format.D:
        return f"R{d['rt']}, [R{d['rn']}, #{d['address']}]"
    if d.fmt == Format.B:
        return f"#{d['offset']}"
    if d.fmt == Format.CB:
        return f"R{d['rt']}, #{d['offset']}"
    if d.fmt == Format.IM:
        return f"R{d['rd']}, {d['field']}, LSL {d['shift'] * 16}"
    return ''


def format_instruction(d: Decoded) -> str:
    operands = format_operands(d)
    if operands:
        return f"{d.mnemonic.value}\t{operands}"
    return d.mnemonic.value


def format_decoded(d: Decoded, address: int) -> str:
    groups = ' '.join(d.groups())
    if d.fmt == Format.UNKNOWN:
        return f"{groups} \t{address}\tUnknown instruction!"
    line = f"{groups} \t{address}\t{format_instruction(d)}"
    if d.diagnostic:
        line += f"\t; {d.diagnostic}"
    return line


def format_invalid(s: str) -> str:
    return f"{s.strip()[:INSTR_BITS]} Invalid binary string!"


def format_data_word(bits: str, address: int) -> str:
    return f"{bits}\t{address}\t{sign_extend(int(bits, 2), INSTR_BITS)}"


@dataclass
class Listing:
    lines: List[str] = field(default_factory=list)
    program: Dict[int, Decoded] = field(default_factory=dict)


def disassemble(source_lines: Iterable[str], base_pc: int = DEFAULT_BASE_PC) -> Listing:
    """Decode every input line into the listing, in input order.

    Instructions up to and including the first BREAK go into ``program`` keyed
    by address; lines after it are listed as signed data words. Malformed lines
    get a diagnostic and do not take an address.
    """
    listing = Listing()
    address = base_pc
    in_data = False
    for raw in source_lines:
        bits = parse_line(raw)
        if bits is None:
            logger.warning("Invalid binary string %r", raw.strip())
            listing.lines.append(format_invalid(raw))
            continue
        if in_data:
            listing.lines.append(format_data_word(bits, address))
        else:
            d = decode(bits)
            if d.fmt == Format.UNKNOWN:
                logger.warning("Unknown instruction %s at address %d", bits, address)
            elif d.diagnostic:
                logger.warning("%s at address %d", d.diagnostic, address)
            listing.program[address] = d
            listing.lines.append(format_decoded(d, address))
            in_data = d.fmt == Format.BREAK
        address += 4
    return listing


@dataclass
class Machine:
    regs: List[int] = field(default_factory=lambda: [0] * NUM_REGISTERS)
    memory: Dict[int, int] = field(default_factory=dict)
    pc: int = DEFAULT_BASE_PC
    cycle: int = 1
    halted: bool = False

    def write_reg(self, idx: int, value: int):
        self.regs[idx] = to_s64(value)

    def load(self, address: int) -> int:
        return self.memory.get(address, 0)

    def store(self, address: int, value: int):
        self.memory[address] = to_s64(value)


R_OPERATIONS = {
    Mnemonic.AND: lambda a, b: a & b,
    Mnemonic.ADD: lambda a, b: a + b,
    Mnemonic.SUB: lambda a, b: a - b,
    Mnemonic.EOR: lambda a, b: a ^ b,
    Mnemonic.ORR: lambda a, b: a | b,
}
I_OPERATIONS = {
    Mnemonic.ADDI: lambda a, imm: a + imm,
    Mnemonic.SUBI: lambda a, imm: a - imm,
}
SHIFT_OPERATIONS = {
    Mnemonic.LSR: lambda v, n: (v & MASK64) >> n,
    Mnemonic.LSL: lambda v, n: v << n,
    Mnemonic.ASR: lambda v, n: v >> n,
}


def execute(m: Machine, d: Decoded) -> Optional[int]:
    """Apply one decoded instruction to the machine.

    Returns the branch target for a taken branch, else None (fall through).
    """
    fmt = d.fmt
    if fmt == Format.R:
        m.write_reg(d['rd'], R_OPERATIONS[d.mnemonic](m.regs[d['rn']], m.regs[d['rm']]))
    elif fmt == Format.I:
        m.write_reg(d['rd'], I_OPERATIONS[d.mnemonic](m.regs[d['rn']], d['imm']))
    elif fmt == Format.SHIFT:
        m.write_reg(d['rd'], SHIFT_OPERATIONS[d.mnemonic](m.regs[d['rn']], d['shamt']))
    elif fmt == Format.D:
        address = m.regs[d['rn']] + d['address']
        if d.mnemonic == Mnemonic.STUR:
            m.store(address, m.regs[d['rt']])
        else:
            m.write_reg(d['rt'], m.load(address))
    elif fmt == Format.B:
        return m.pc + d['offset'] * 4
    elif fmt == Format.CB:
        value = m.regs[d['rt']]
        taken = value == 0 if d.mnemonic == Mnemonic.CBZ else value != 0
        if taken:
            return m.pc + d['offset'] * 4
    elif fmt == Format.IM:
        shift = d['shift'] * 16
        if d.mnemonic == Mnemonic.MOVZ:
            m.write_reg(d['rd'], d['field'] << shift)
        else:
            mask = 0xFFFF << shift
            m.write_reg(d['rd'], (m.regs[d['rd']] & ~mask) | (d['field'] << shift))
    elif fmt == Format.NOP:
        pass
    elif fmt == Format.BREAK:
        m.halted = True
    else:
        raise ValueError(f"cannot execute {fmt.value} instruction {d.bits}")
    return None


def format_snapshot(m: Machine, address: int, d: Decoded) -> str:
    lines = [SEPARATOR, f"cycle:{m.cycle}\t{address}\t{format_instruction(d)}", '', 'registers:']
    for i in range(0, NUM_REGISTERS, 8):
        lines.append(f"r{i:02d}:\t" + '\t'.join(str(v) for v in m.regs[i:i + 8]))
    lines.append('')
    lines.append('data:')
    for base in sorted({a - a % WORD_SIZE for a in m.memory}):
        lines.append(f"{base}:\t" + '\t'.join(str(m.load(base + k)) for k in range(WORD_SIZE)))
    return '\n'.join(lines) + '\n'


class SimpleLEGv8:
    def __init__(self, program: Dict[int, Decoded], base_pc: int = DEFAULT_BASE_PC):
        self.program = dict(program)  # copy
        self.base = base_pc
        self.machine = Machine(pc=base_pc)
        self.step_count = 0
        self.exhausted = False

    @property
    def running(self) -> bool:
        return not (self.machine.halted or self.exhausted)

    def fetch_instr_at_pc(self, pc: int) -> Optional[Decoded]:
        return self.program.get(pc)

    def step(self) -> Dict[str, Any]:
        m = self.machine
        if m.halted:
            return {'status': 'halted'}
        if self.exhausted:
            return {'status': 'pc_out_of_range', 'pc': m.pc}
        d = self.fetch_instr_at_pc(m.pc)
        if d is None:
            self.exhausted = True
            logger.info("No instruction at address %d, input exhausted", m.pc)
            return {'status': 'pc_out_of_range', 'pc': m.pc}
        action = {'pc': m.pc, 'decoded': d}
        if d.fmt == Format.UNKNOWN or d.diagnostic:
            logger.debug("Skipping %s at address %d", d.bits, m.pc)
            m.pc += 4
            action['status'] = 'unknown' if d.fmt == Format.UNKNOWN else 'unsupported'
            return action

        target = execute(m, d)
        m.pc = target if target is not None else m.pc + 4
        self.step_count += 1
        logger.debug("cycle %d: %s -> pc %d", m.cycle, format_instruction(d), m.pc)

        action['step'] = m.cycle
        action['snapshot'] = format_snapshot(m, action['pc'], d)
        action['regs_snapshot'] = m.regs.copy()
        m.cycle += 1
        if m.halted:
            logger.info("BREAK at address %d, simulation stopped", action['pc'])
            action['status'] = 'halted'
        else:
            action['status'] = 'ok'
        return action

    def run_n(self, n: int) -> List[Dict[str, Any]]:
        actions = []
        for _ in range(n):
            if not self.running:
                break
            actions.append(self.step())
        return actions

    def run(self, max_cycles: Optional[int] = None) -> List[Dict[str, Any]]:
        actions = []
        start = self.step_count
        while self.running:
            if max_cycles is not None and self.step_count - start >= max_cycles:
                logger.warning("Cycle limit %d reached at address %d", max_cycles, self.machine.pc)
                break
            actions.append(self.step())
        return actions


def simulate(listing: Listing, base_pc: int = DEFAULT_BASE_PC,
             max_cycles: Optional[int] = DEFAULT_MAX_CYCLES) -> Iterator[str]:
    sim = SimpleLEGv8(listing.program, base_pc=base_pc)
    for action in sim.run(max_cycles=max_cycles):
        if 'snapshot' in action:
            yield action['snapshot']
