# Ref: PCB Artists I2C Decibel Sound Level Meter Module, programming manual

import enum


__all__ = ["Filter", "Variant"]


DEFAULT_I2C_ADDRESS = 0x48
DEFAULT_I2C_BUS     = 1

REG_VERSION       = 0x00 # 8-bit ro
REG_CONTROL       = 0x06 # 8-bit rw
REG_TAVG_HIGH     = 0x07 # 8-bit rw, latched on TAVG_LOW write
REG_TAVG_LOW      = 0x08 # 8-bit rw
REG_RESET         = 0x09 # 8-bit wo
REG_DECIBEL       = 0x0A # 8-bit ro
REG_MIN           = 0x0B # 8-bit ro
REG_MAX           = 0x0C # 8-bit ro
REG_DBHISTORY_0   = 0x14 # 100 x 8-bit ro, newest first
REG_FREQ_64BINS_0 = 0x78 # 64 x 8-bit ro, spectrum analyzer only
REG_FREQ_16BINS_0 = 0xB8 # 16 x 8-bit ro, spectrum analyzer only

BIT_VERSION_REGULAR = 0x31

BIT_CONTROL_PDOWN   = 0b0000_0001
MASK_CONTROL_FILTER = 0b0000_0110
BIT_FILTER_NONE     = 0b0000_0000
BIT_FILTER_A        = 0b0000_0010
BIT_FILTER_C        = 0b0000_0100

BIT_RESET_MIN_MAX   = 0x02
BIT_RESET_HISTORY   = 0x04
BIT_RESET_SYSTEM    = 0x08

DBHISTORY_SIZE      = 100
FREQ_64BINS_SIZE    = 64
FREQ_16BINS_SIZE    = 16

DEFAULT_AVERAGING_TIME = 1000 # ms
MAX_AVERAGING_TIME     = 0xFFFF # ms


class Filter(enum.Enum):
    """Frequency weighting applied to the decibel, minimum, maximum and history readings."""
    NONE        = 0
    A_WEIGHTING = 1
    C_WEIGHTING = 2

    def __str__(self):
        return self.name.lower().replace("_", "-")


bit_filter = {
    Filter.NONE:        BIT_FILTER_NONE,
    Filter.A_WEIGHTING: BIT_FILTER_A,
    Filter.C_WEIGHTING: BIT_FILTER_C,
}

DEFAULT_FILTER = Filter.A_WEIGHTING


class Variant(enum.Enum):
    REGULAR  = "regular"
    SPECTRUM = "spectrum"

    def __str__(self):
        return self.value
