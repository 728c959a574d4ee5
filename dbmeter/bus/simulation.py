import asyncio

from ..registers import (
    REG_VERSION, REG_CONTROL, REG_TAVG_HIGH, REG_TAVG_LOW, REG_RESET, REG_DECIBEL, REG_MIN,
    REG_MAX, REG_DBHISTORY_0, REG_FREQ_64BINS_0, REG_FREQ_16BINS_0,
    BIT_VERSION_REGULAR, BIT_CONTROL_PDOWN, MASK_CONTROL_FILTER,
    BIT_RESET_MIN_MAX, BIT_RESET_HISTORY, BIT_RESET_SYSTEM,
    DBHISTORY_SIZE, FREQ_64BINS_SIZE, FREQ_16BINS_SIZE,
    DEFAULT_AVERAGING_TIME, DEFAULT_FILTER, Variant, bit_filter,
)
from . import I2CBus, I2CBusError


__all__ = ["DecibelMeterModel", "SimulatedI2CBus"]


VERSION_SPECTRUM = 0x32

_DBHISTORY_END   = REG_DBHISTORY_0 + DBHISTORY_SIZE
_FREQ_64BINS_END = REG_FREQ_64BINS_0 + FREQ_64BINS_SIZE
_FREQ_16BINS_END = REG_FREQ_16BINS_0 + FREQ_16BINS_SIZE


class DecibelMeterModel:
    """
    Register-level emulation of the decibel meter.

    Only the registers used by the driver are emulated. Reads of unmapped registers return
    zero and writes to them are ignored.
    """

    def __init__(self, variant=Variant.REGULAR, *, level=0):
        self.variant  = variant
        self.version  = BIT_VERSION_REGULAR if variant == Variant.REGULAR else VERSION_SPECTRUM
        self.history  = bytearray(DBHISTORY_SIZE)
        self.bins_64  = bytearray(FREQ_64BINS_SIZE)
        self.bins_16  = bytearray(FREQ_16BINS_SIZE)
        self._restore_defaults()
        self.decibel  = self.min = self.max = level

    def _restore_defaults(self):
        self.control  = bit_filter[DEFAULT_FILTER]
        self.tavg     = DEFAULT_AVERAGING_TIME
        self._tavg_high = DEFAULT_AVERAGING_TIME >> 8

    @property
    def filter(self):
        for filter, bits in bit_filter.items():
            if self.control & MASK_CONTROL_FILTER == bits:
                return filter

    @property
    def powered_down(self):
        return bool(self.control & BIT_CONTROL_PDOWN)

    def record(self, level):
        """Expose a new measurement; it becomes the newest history entry."""
        self.decibel = level
        self.min = min(self.min, level)
        self.max = max(self.max, level)
        self.history[1:] = self.history[:-1]
        self.history[0] = level

    def read(self, register):
        if register == REG_VERSION:
            return self.version
        if register == REG_CONTROL:
            return self.control
        if register == REG_TAVG_HIGH:
            return self.tavg >> 8
        if register == REG_TAVG_LOW:
            return self.tavg & 0xff
        if register == REG_DECIBEL:
            return self.decibel
        if register == REG_MIN:
            return self.min
        if register == REG_MAX:
            return self.max
        if REG_DBHISTORY_0 <= register < _DBHISTORY_END:
            return self.history[register - REG_DBHISTORY_0]
        if self.variant == Variant.SPECTRUM:
            if REG_FREQ_64BINS_0 <= register < _FREQ_64BINS_END:
                return self.bins_64[register - REG_FREQ_64BINS_0]
            if REG_FREQ_16BINS_0 <= register < _FREQ_16BINS_END:
                return self.bins_16[register - REG_FREQ_16BINS_0]
        return 0

    def write(self, register, value):
        if register == REG_CONTROL:
            self.control = value
        elif register == REG_TAVG_HIGH:
            self._tavg_high = value
        elif register == REG_TAVG_LOW:
            self.tavg = (self._tavg_high << 8) | value
        elif register == REG_RESET:
            if value == BIT_RESET_MIN_MAX:
                self.min = self.max = self.decibel
            elif value == BIT_RESET_HISTORY:
                self.history[:] = bytes(DBHISTORY_SIZE)
            elif value == BIT_RESET_SYSTEM:
                self._restore_defaults()


class SimulatedI2CBus(I2CBus):
    """
    In-memory I²C bus with emulated targets attached.

    Every transfer is appended to :attr:`transactions`, so tests can assert on the exact
    register traffic a driver operation produced.
    Each transfer yields to the event loop once, as a transfer on a real bus would.
    """

    def __init__(self, targets=None):
        self.targets      = dict(targets or {})
        self.transactions = []
        self._faults      = 0
        self._closed      = False

    def fail_next(self, count=1):
        """Make the next ``count`` transfers fail as if the target did not acknowledge."""
        self._faults += count

    def _target(self, operation, address, register):
        if self._closed:
            raise I2CBusError("bus is closed",
                              address=address, register=register, operation=operation)
        if self._faults:
            self._faults -= 1
            raise I2CBusError("injected fault",
                              address=address, register=register, operation=operation)
        try:
            return self.targets[address]
        except KeyError:
            raise I2CBusError("target did not acknowledge",
                              address=address, register=register, operation=operation) from None

    async def read_byte(self, address: int, register: int) -> int:
        await asyncio.sleep(0)
        target = self._target("read", address, register)
        self.transactions.append(("read", address, register))
        return target.read(register)

    async def write_byte(self, address: int, register: int, value: int):
        await asyncio.sleep(0)
        target = self._target("write", address, register)
        self.transactions.append(("write", address, register, value))
        target.write(register, value)

    async def read_block(self, address: int, register: int, length: int) -> bytes:
        self._check_block_length(length)
        await asyncio.sleep(0)
        target = self._target("read block", address, register)
        self.transactions.append(("read_block", address, register, length))
        return bytes(target.read(register + offset) for offset in range(length))

    async def close(self):
        self._closed = True
