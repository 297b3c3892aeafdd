"""
A64 Subset Interpreter
======================

Fetch-decode-execute loop over the loaded program image.

State:
- x0-x30: 64-bit general-purpose registers
- sp: stack pointer, starts at the top of memory
- pc: program counter, starts at 0
- N, Z, C, V: condition flags, written only by flag-setting instructions

Register 31 is context-dependent: it names sp as a load/store base and
in the non-flag-setting immediate add/sub forms, and the zero register
everywhere else. Writes to a 32-bit (w) register zero the upper half.

Decoding tests exact special-case words first (hints, barriers,
branch-to-register, exception calls) and then the general encoding
families, so overlapping encodings always resolve the same way.

Execution states:
    RUNNING -> HALTED   halt opcode, ret with no outstanding call, or the
                        pc leaving the program image
    RUNNING -> FAULTED  unknown word, unknown extended opcode, fatal host
                        error, misaligned pc, or the instruction ceiling

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
import logging

from armlet.errors import ExecutionFault
from armlet.assembler import opcodes as op
from armlet.assembler.opcodes import sign_extend, field
from armlet.emulator.config import EngineConfig
from armlet.emulator.extended import ExecutionContext, ExtendedOpcodes
from armlet.emulator.host import HostServices
from armlet.emulator.memory import Memory


logger = logging.getLogger(__name__)

MASK64 = (1 << 64) - 1
MASK32 = (1 << 32) - 1


class ExecState(Enum):
    RUNNING = "running"
    HALTED = "halted"
    FAULTED = "faulted"


@dataclass
class Flags:
    """Condition flags."""
    n: bool = False
    z: bool = False
    c: bool = False
    v: bool = False

    def __str__(self) -> str:
        return "".join(
            name if value else "-"
            for name, value in (("N", self.n), ("Z", self.z), ("C", self.c), ("V", self.v))
        )


@dataclass
class RunResult:
    """
    Outcome of run_to_halt().

    Attributes:
        state: Final execution state (RUNNING if a hook stopped the run)
        instructions: Instructions executed; the halting instruction is not
            counted
        fault: The fault, when state is FAULTED
    """
    state: ExecState
    instructions: int
    fault: Optional[ExecutionFault] = None

    @property
    def halted(self) -> bool:
        return self.state is ExecState.HALTED


def evaluate_condition(cond: int, flags: Flags) -> bool:
    """
    Evaluate a 4-bit condition code against the flags.

    Codes 14 (al) and 15 (nv) are always true.
    """
    match cond & 0xF:
        case 0:
            return flags.z
        case 1:
            return not flags.z
        case 2:
            return flags.c
        case 3:
            return not flags.c
        case 4:
            return flags.n
        case 5:
            return not flags.n
        case 6:
            return flags.v
        case 7:
            return not flags.v
        case 8:
            return flags.c and not flags.z
        case 9:
            return not flags.c or flags.z
        case 10:
            return flags.n == flags.v
        case 11:
            return flags.n != flags.v
        case 12:
            return not flags.z and flags.n == flags.v
        case 13:
            return flags.z or flags.n != flags.v
        case _:
            return True


def add_with_carry(a: int, b: int, carry: int, bits: int) -> tuple[int, Flags]:
    """
    Add two unsigned `bits`-wide values plus a carry-in.

    Subtraction a - b is ``add_with_carry(a, ~b, 1, bits)``, which makes C
    mean "no borrow".

    Returns:
        (result, flags)
    """
    mask = (1 << bits) - 1
    a &= mask
    b &= mask
    total = a + b + carry
    result = total & mask
    sign = 1 << (bits - 1)
    flags = Flags(
        n=bool(result & sign),
        z=result == 0,
        c=total > mask,
        v=bool(~(a ^ b) & (a ^ result) & sign),
    )
    return result, flags


def shift_value(value: int, kind: int, amount: int, bits: int) -> int:
    """Apply an LSL/LSR/ASR/ROR (kind 0-3) shift within `bits` bits."""
    mask = (1 << bits) - 1
    value &= mask
    amount %= bits
    match kind:
        case 0:
            return (value << amount) & mask
        case 1:
            return value >> amount
        case 2:
            return (sign_extend(value, bits) >> amount) & mask
        case _:
            return ((value >> amount) | (value << (bits - amount))) & mask


def bitfield_move(value: int, immr: int, imms: int, bits: int, signed: bool) -> int:
    """
    SBFM/UBFM: extract or insert a bit field.

    When imms >= immr, bits imms..immr move to the bottom (lsr, asr,
    sign/zero extend). Otherwise the low imms+1 bits move up to bit
    ``bits - immr`` (lsl).
    """
    mask = (1 << bits) - 1
    value &= mask
    if imms >= immr:
        width = imms - immr + 1
        result = (value >> immr) & ((1 << width) - 1)
        top = width
    else:
        width = imms + 1
        result = (value & ((1 << width) - 1)) << (bits - immr)
        top = bits - immr + width
    if signed and top < bits and result >> (top - 1) & 1:
        result |= mask & ~((1 << top) - 1)
    return result & mask


# =============================================================================
# CPU
# =============================================================================

class CPU:
    """
    A64 subset interpreter with an instruction hook.

    The hook ``on_instruction(pc, word) -> bool`` runs before each
    instruction; returning False stops the step without executing it.

    Example:
        >>> memory = Memory(64)
        >>> memory.load(bytes.fromhex("400580d2e13f0091e13f00d4"))
        >>> cpu = CPU(memory)
        >>> cpu.run_to_halt().instructions
        2
        >>> cpu.get_reg(0)
        42
    """

    def __init__(
        self,
        memory: Memory,
        host: Optional[HostServices] = None,
        config: Optional[EngineConfig] = None,
        context: Optional[ExecutionContext] = None,
    ):
        """
        Initialize the CPU.

        Args:
            memory: Memory holding the loaded program
            host: Host services for extended opcodes (in-memory if None)
            config: Engine configuration (defaults if None)
            context: Execution context; built from host and config if None
        """
        self.memory = memory
        self.config = config or EngineConfig()
        self.context = context or ExecutionContext.from_config(self.config, host or HostServices())
        self.extended = ExtendedOpcodes(memory, self.context, self.config)

        # on_instruction(pc, word) -> bool: return False to stop execution
        self.on_instruction: Optional[Callable[[int, int], bool]] = None

        self.reset()

    def reset(self) -> None:
        """Clear registers and flags, and restart at pc 0."""
        self._x = [0] * 31
        self.sp = (self.memory.base + self.memory.size) & MASK64
        self.pc = 0
        self.flags = Flags()
        self.state = ExecState.RUNNING
        self.instructions_executed = 0
        self.call_depth = 0
        self.fault: Optional[ExecutionFault] = None

    # =========================================================================
    # Registers
    # =========================================================================

    def get_reg(self, number: int) -> int:
        """Read a register where 31 is the zero register."""
        return self._x[number] if number < 31 else 0

    def set_reg(self, number: int, value: int) -> None:
        """Write a register where 31 is the zero register (write ignored)."""
        if number < 31:
            self._x[number] = value & MASK64

    def _get_reg_sp(self, number: int) -> int:
        return self._x[number] if number < 31 else self.sp

    def _set_reg_sp(self, number: int, value: int) -> None:
        if number < 31:
            self._x[number] = value & MASK64
        else:
            self.sp = value & MASK64

    def _write(self, rd: int, value: int, sf: int, sp_context: bool = False) -> None:
        value &= MASK64 if sf else MASK32
        if sp_context:
            self._set_reg_sp(rd, value)
        else:
            self.set_reg(rd, value)

    @property
    def registers(self) -> dict[str, int]:
        """Snapshot of x0-x30, sp, pc and the flags as an integer NZCV."""
        regs = {f"x{i}": v for i, v in enumerate(self._x)}
        regs["sp"] = self.sp
        regs["pc"] = self.pc
        regs["nzcv"] = (
            (self.flags.n << 3) | (self.flags.z << 2) | (self.flags.c << 1) | int(self.flags.v)
        )
        return regs

    # =========================================================================
    # Execution Loop
    # =========================================================================

    def step(self) -> bool:
        """
        Execute one instruction.

        Returns:
            True if an instruction ran and the CPU is still running
        """
        if self.state is not ExecState.RUNNING:
            return False

        pc = self.pc
        if self.instructions_executed >= self.config.max_instructions:
            self._fault(f"instruction limit exceeded ({self.config.max_instructions})", pc)
            return False
        if pc % 4:
            self._fault("misaligned pc", pc)
            return False

        offset = self.memory.translate(pc, 4)
        if offset is None or offset >= self.memory.program_size:
            logger.debug(f"pc 0x{pc:x} left the program image")
            self.state = ExecState.HALTED
            return False

        word = self.memory.read_uint(pc, 4)
        if self.on_instruction is not None and not self.on_instruction(pc, word):
            return False

        try:
            self._execute(word)
        except ExecutionFault as e:
            self._fault(e.message, pc)
            return False

        if self.state is ExecState.RUNNING:
            self.instructions_executed += 1
            return True
        return False

    def run_to_halt(self) -> RunResult:
        """Step until the CPU halts, faults, or a hook stops it."""
        while self.step():
            pass
        logger.info(f"run ended {self.state.value} after {self.instructions_executed} instructions")
        return RunResult(self.state, self.instructions_executed, self.fault)

    def _fault(self, message: str, pc: int) -> None:
        self.fault = ExecutionFault(message, pc)
        self.state = ExecState.FAULTED
        logger.warning(f"execution fault: {self.fault}")

    def _halt(self) -> None:
        self.state = ExecState.HALTED

    # =========================================================================
    # Decode
    # =========================================================================

    def _execute(self, word: int) -> None:
        """Decode one word and execute it, updating pc."""
        next_pc = self.pc + 4

        if word & 0xFFFFF01F == op.NOP:
            pass
        elif word & op.BARRIER_MASK in op.BARRIERS.values():
            pass
        elif word & op.BRANCH_REG_MASK in (op.BR, op.BLR, op.RET):
            next_pc = self._branch_register(word, next_pc)
        elif word & op.EXCEPTION_MASK in (op.SVC, op.HVC, op.SMC):
            self._exception(word)
        else:
            next_pc = self._execute_family(word, next_pc)

        if self.state is ExecState.RUNNING:
            self.pc = next_pc & MASK64

    def _execute_family(self, word: int, next_pc: int) -> int:
        sf = word >> 31
        rd = word & 0x1F

        if op.matches(word, op.ADD_SUB_IMM):
            self._add_sub_immediate(word, sf, rd)
        elif op.matches(word, op.ADD_SUB_REG):
            self._add_sub_register(word, sf, rd)
        elif op.matches(word, op.LOGICAL_REG):
            self._logical(word, sf, rd)
        elif op.matches(word, op.MOVE_WIDE):
            self._move_wide(word, sf, rd)
        elif op.matches(word, op.BITFIELD):
            self._bitfield(word, sf, rd)
        elif op.matches(word, op.EXTRACT):
            self._extract(word, sf, rd)
        elif op.matches(word, op.DATA_2SRC):
            self._data_2src(word, sf, rd)
        elif op.matches(word, op.MULTIPLY_ADD):
            self._multiply_add(word, sf, rd)
        elif op.matches(word, op.BRANCH_IMM):
            return self._branch_immediate(word, next_pc)
        elif op.matches(word, op.COND_BRANCH):
            if evaluate_condition(word & 0xF, self.flags):
                return self.pc + sign_extend(field(word, 5, 19), 19) * 4
        elif op.matches(word, op.COMPARE_BRANCH):
            value = self.get_reg(rd) & (MASK64 if sf else MASK32)
            if (value != 0) == bool(word & (1 << 24)):
                return self.pc + sign_extend(field(word, 5, 19), 19) * 4
        elif op.matches(word, op.LDST_UNSIGNED):
            size = word >> 30
            address = self._get_reg_sp(field(word, 5, 5)) + (field(word, 10, 12) << size)
            self._load_store(size, field(word, 22, 2), rd, address)
        elif op.matches(word, op.LDST_REG):
            self._load_store_register(word, rd)
        elif op.matches(word, op.LDST_IMM9):
            self._load_store_imm9(word, rd)
        elif op.matches(word, op.LDR_LITERAL):
            self._load_literal(word, rd)
        elif op.matches(word, op.LDST_PAIR):
            self._load_store_pair(word, rd)
        else:
            self._unknown(word)
        return next_pc

    def _unknown(self, word: int) -> None:
        raise ExecutionFault(f"unknown instruction 0x{word:08x}", self.pc)

    # =========================================================================
    # Data Processing
    # =========================================================================

    def _add_sub_immediate(self, word: int, sf: int, rd: int) -> None:
        bits = 64 if sf else 32
        imm = field(word, 10, 12) << (12 if word & (1 << 22) else 0)
        a = self._get_reg_sp(field(word, 5, 5))
        subtract = bool(word & (1 << 30))
        set_flags = bool(word & (1 << 29))

        if subtract:
            result, flags = add_with_carry(a, ~imm, 1, bits)
        else:
            result, flags = add_with_carry(a, imm, 0, bits)

        if set_flags:
            self.flags = flags
            self._write(rd, result, sf)
        else:
            self._write(rd, result, sf, sp_context=True)

    def _add_sub_register(self, word: int, sf: int, rd: int) -> None:
        bits = 64 if sf else 32
        kind = field(word, 22, 2)
        if kind == 3:
            self._unknown(word)
        a = self.get_reg(field(word, 5, 5))
        b = shift_value(self.get_reg(field(word, 16, 5)), kind, field(word, 10, 6), bits)

        if word & (1 << 30):
            result, flags = add_with_carry(a, ~b, 1, bits)
        else:
            result, flags = add_with_carry(a, b, 0, bits)

        if word & (1 << 29):
            self.flags = flags
        self._write(rd, result, sf)

    def _logical(self, word: int, sf: int, rd: int) -> None:
        bits = 64 if sf else 32
        mask = (1 << bits) - 1
        a = self.get_reg(field(word, 5, 5)) & mask
        b = shift_value(
            self.get_reg(field(word, 16, 5)), field(word, 22, 2), field(word, 10, 6), bits
        )
        if word & (1 << 21):
            b = ~b & mask

        match field(word, 29, 2):
            case 0:
                result = a & b
            case 1:
                result = a | b
            case 2:
                result = a ^ b
            case _:
                result = a & b
                self.flags = Flags(n=bool(result >> (bits - 1)), z=result == 0)
        self._write(rd, result, sf)

    def _move_wide(self, word: int, sf: int, rd: int) -> None:
        opc = field(word, 29, 2)
        hw = field(word, 21, 2)
        if opc == 1 or (not sf and hw > 1):
            self._unknown(word)
        shift = hw * 16
        imm = field(word, 5, 16) << shift

        match opc:
            case 0:
                result = ~imm
            case 2:
                result = imm
            case _:
                result = (self.get_reg(rd) & ~(0xFFFF << shift)) | imm
        self._write(rd, result, sf)

    def _bitfield(self, word: int, sf: int, rd: int) -> None:
        opc = field(word, 29, 2)
        n = field(word, 22, 1)
        if opc not in (0, 2) or n != sf:
            self._unknown(word)
        bits = 64 if sf else 32
        immr, imms = field(word, 16, 6), field(word, 10, 6)
        if immr >= bits or imms >= bits:
            self._unknown(word)
        value = self.get_reg(field(word, 5, 5))
        self._write(rd, bitfield_move(value, immr, imms, bits, signed=opc == 0), sf)

    def _extract(self, word: int, sf: int, rd: int) -> None:
        bits = 64 if sf else 32
        lsb = field(word, 10, 6)
        if field(word, 22, 1) != sf or lsb >= bits:
            self._unknown(word)
        mask = (1 << bits) - 1
        high = self.get_reg(field(word, 5, 5)) & mask
        low = self.get_reg(field(word, 16, 5)) & mask
        self._write(rd, ((high << bits) | low) >> lsb, sf)

    def _data_2src(self, word: int, sf: int, rd: int) -> None:
        bits = 64 if sf else 32
        mask = (1 << bits) - 1
        a = self.get_reg(field(word, 5, 5)) & mask
        b = self.get_reg(field(word, 16, 5)) & mask

        match field(word, 10, 6):
            case 0x02:
                result = a // b if b else 0
            case 0x03:
                result = self._signed_divide(sign_extend(a, bits), sign_extend(b, bits))
            case 0x08 | 0x09 | 0x0A | 0x0B as opcode:
                result = shift_value(a, opcode - 0x08, b % bits, bits)
            case _:
                self._unknown(word)
        self._write(rd, result, sf)

    @staticmethod
    def _signed_divide(a: int, b: int) -> int:
        """Division rounding toward zero; divide by zero gives 0."""
        if b == 0:
            return 0
        quotient = abs(a) // abs(b)
        return -quotient if (a < 0) != (b < 0) else quotient

    def _multiply_add(self, word: int, sf: int, rd: int) -> None:
        mask = MASK64 if sf else MASK32
        product = (self.get_reg(field(word, 5, 5)) & mask) * (self.get_reg(field(word, 16, 5)) & mask)
        accumulator = self.get_reg(field(word, 10, 5))
        if word & (1 << 15):
            self._write(rd, accumulator - product, sf)
        else:
            self._write(rd, accumulator + product, sf)

    # =========================================================================
    # Branches and System
    # =========================================================================

    def _branch_immediate(self, word: int, next_pc: int) -> int:
        if word & (1 << 31):
            self.set_reg(op.REG_LR, next_pc)
            self.call_depth += 1
        return self.pc + sign_extend(word & 0x3FFFFFF, 26) * 4

    def _branch_register(self, word: int, next_pc: int) -> int:
        target = self.get_reg(field(word, 5, 5))
        kind = word & op.BRANCH_REG_MASK

        if kind == op.RET:
            if self.call_depth == 0:
                logger.debug("ret with no outstanding call: halting")
                self._halt()
                return next_pc
            self.call_depth -= 1
        elif kind == op.BLR:
            self.set_reg(op.REG_LR, next_pc)
            self.call_depth += 1
        return target

    def _exception(self, word: int) -> None:
        if word & op.EXCEPTION_MASK != op.SVC:
            return
        op_id = field(word, 5, 16)
        if not self.extended.is_extended(op_id):
            raise ExecutionFault(f"Unknown SVC #0x{op_id:x}", self.pc)
        if self.extended.dispatch(op_id, self):
            self._halt()

    # =========================================================================
    # Loads and Stores
    # =========================================================================

    def _load_store(self, size: int, opc: int, rt: int, address: int) -> None:
        """
        Perform one access of 2**size bytes.

        opc 0 stores, 1 loads zero-extended, 2 loads sign-extended to 64
        bits and 3 sign-extended to 32 bits. Out-of-range accesses are
        dropped; a dropped load leaves rt unchanged.
        """
        nbytes = 1 << size
        address &= MASK64
        if opc == 0:
            self.memory.write_uint(address, nbytes, self.get_reg(rt))
            return

        if (size == 3 and opc > 1) or (size == 2 and opc == 3):
            raise ExecutionFault("invalid load/store form", self.pc)
        value = self.memory.read_uint(address, nbytes)
        if value is None:
            return
        if opc == 2:
            value = sign_extend(value, nbytes * 8) & MASK64
        elif opc == 3:
            value = sign_extend(value, nbytes * 8) & MASK32
        self.set_reg(rt, value)

    def _load_store_imm9(self, word: int, rt: int) -> None:
        size = word >> 30
        rn = field(word, 5, 5)
        offset = sign_extend(field(word, 12, 9), 9)
        mode = field(word, 10, 2)
        base = self._get_reg_sp(rn)

        match mode:
            case op.IDX_UNSCALED:
                self._load_store(size, field(word, 22, 2), rt, base + offset)
            case op.IDX_POST:
                self._load_store(size, field(word, 22, 2), rt, base)
                self._set_reg_sp(rn, base + offset)
            case op.IDX_PRE:
                self._load_store(size, field(word, 22, 2), rt, base + offset)
                self._set_reg_sp(rn, base + offset)
            case _:
                self._unknown(word)

    def _load_store_register(self, word: int, rt: int) -> None:
        size = word >> 30
        index = self.get_reg(field(word, 16, 5))
        match field(word, 13, 3):
            case 0b010:
                index &= MASK32
            case 0b110:
                index = sign_extend(index, 32)
            case 0b011 | 0b111:
                pass
            case _:
                self._unknown(word)
        if word & (1 << 12):
            index <<= size
        address = self._get_reg_sp(field(word, 5, 5)) + index
        self._load_store(size, field(word, 22, 2), rt, address)

    def _load_literal(self, word: int, rt: int) -> None:
        address = self.pc + sign_extend(field(word, 5, 19), 19) * 4
        match word >> 30:
            case 0:
                self._load_store(2, 1, rt, address)
            case 1:
                self._load_store(3, 1, rt, address)
            case 2:
                self._load_store(2, 2, rt, address)
            case _:
                self._unknown(word)

    def _load_store_pair(self, word: int, rt: int) -> None:
        opc = word >> 30
        if opc not in (0, 2) or word & (1 << 26):
            self._unknown(word)
        size = 3 if opc == 2 else 2
        rt2 = field(word, 10, 5)
        rn = field(word, 5, 5)
        offset = sign_extend(field(word, 15, 7), 7) << size
        load = field(word, 22, 1)
        mode = field(word, 23, 2)
        base = self._get_reg_sp(rn)

        address = base if mode == 1 else base + offset
        self._load_store(size, load, rt, address)
        self._load_store(size, load, rt2, address + (1 << size))
        if mode in (1, 3):
            self._set_reg_sp(rn, base + offset)
