# This file is part of Snagfxload
# Copyright (C) 2023 Bootlin
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License
# as published by the Free Software Foundation; either version 2
# of the License, or (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston, MA  02110-1301, USA.

import usb.core
import usb.util
import errno
import logging
from enum import Enum

from snagfxload.errors import TransferError

logger = logging.getLogger("snagfxload")

"""
EZ-USB firmware download. The boot ROM of every EZ-USB chip answers the
RW_INTERNAL vendor request, which can only reach on-chip RAM and the CPUCS
register. External RAM and the boot EEPROM are reached through
RW_MEMORY/RW_EEPROM, which a second stage loader such as Vend_Ax has to
implement.
"""

RW_INTERNAL = 0xa0
RW_EEPROM = 0xa2
RW_MEMORY = 0xa3

VENDOR_OUT = usb.util.build_request_type(usb.util.CTRL_OUT, usb.util.CTRL_TYPE_VENDOR, usb.util.CTRL_RECIPIENT_DEVICE)
MAX_CTRL_SIZE = 4096
EEPROM_RECORD_SIZE = 1023
EEPROM_LAST_RECORD = 0x80
EEPROM_FX2_CONFIG_OFFSET = 7
# boot formats which only carry VID/PID/DID, the image is then a raw EEPROM dump
ID_ONLY_FORMATS = (0xb0, 0xb4, 0xc0)
LIBUSB_ERROR_IO = -1


class ChipFamily(Enum):
	AN21 = "an21"
	FX = "fx"
	FX2 = "fx2"
	FX2LP = "fx2lp"

	@classmethod
	def from_name(cls, name: str):
		try:
			return cls(name.lower())
		except ValueError:
			raise ValueError(f"illegal microcontroller type: {name}") from None

	@classmethod
	def names(cls) -> list:
		return [chip.value for chip in cls]

	@property
	def cpucs(self) -> int:
		if self in (ChipFamily.AN21, ChipFamily.FX):
			return 0x7f92
		return 0xe600

	@property
	def internal_ranges(self) -> tuple:
		return INTERNAL_RAM[self]

	@property
	def eeprom_data_offset(self) -> int:
		return 7 if self == ChipFamily.AN21 else 8

	def split(self, addr: int, data: bytes):
		"""
		Cut a segment at on-chip RAM boundaries, yielding
		(addr, data, is_external) pieces.
		"""
		boundaries = sorted(set([start for start, end in self.internal_ranges] + [end + 1 for start, end in self.internal_ranges]))
		while len(data) > 0:
			length = len(data)
			for boundary in boundaries:
				if addr < boundary < addr + length:
					length = boundary - addr
					break
			external = not any(start <= addr <= end for start, end in self.internal_ranges)
			yield (addr, data[:length], external)
			addr += length
			data = data[length:]


INTERNAL_RAM = {
	ChipFamily.AN21: ((0x0000, 0x1b3f),),
	ChipFamily.FX: ((0x0000, 0x1b3f),),
	ChipFamily.FX2: ((0x0000, 0x1fff), (0xe000, 0xe1ff)),
	ChipFamily.FX2LP: ((0x0000, 0x3fff), (0xe000, 0xe1ff)),
}

# AN21-compatible for most purposes
DEFAULT_CHIP_FAMILY = ChipFamily.FX


class Destination(Enum):
	VOLATILE_MEMORY = "RAM"
	PERSISTENT_STORE = "EEPROM"


def is_disconnect_error(e: usb.core.USBError) -> bool:
	return e.errno == errno.EIO or getattr(e, "backend_error_code", None) == LIBUSB_ERROR_IO


class EzusbTransfer():
	def __init__(self, timeout: int = 1000):
		self.timeout = timeout

	def write(self, dev, label: str, request: int, addr: int, data: bytes):
		logger.debug(f"[EZ-USB] {label}: request 0x{request:02x} addr 0x{addr:04x} len {len(data)}")
		try:
			written = dev.ctrl_transfer(VENDOR_OUT, request, wValue=addr, wIndex=0, data_or_wLength=data, timeout=self.timeout)
		except usb.core.USBError as e:
			raise TransferError(f"{label} at 0x{addr:04x} failed: {e}") from e
		if written != len(data):
			raise TransferError(f"{label} at 0x{addr:04x}: wrote {written} of {len(data)} bytes")

	def cpucs(self, dev, chip: ChipFamily, run: bool):
		if not run:
			self.write(dev, "stop CPU", RW_INTERNAL, chip.cpucs, b"\x01")
			return

		try:
			self.write(dev, "start CPU", RW_INTERNAL, chip.cpucs, b"\x00")
		except TransferError as e:
			# the device may disconnect as soon as the new firmware runs
			if not (isinstance(e.__cause__, usb.core.USBError) and is_disconnect_error(e.__cause__)):
				raise
			logger.debug("Device disconnected after CPU start")

	def pieces(self, chip: ChipFamily, image):
		for addr, data in image.chunks(MAX_CTRL_SIZE):
			yield from chip.split(addr, data)

	def load_ram(self, dev, chip: ChipFamily, image, loader_resident: bool = False):
		pieces = list(self.pieces(chip, image))
		internal = [(addr, data) for addr, data, external in pieces if not external]
		external = [(addr, data) for addr, data, external in pieces if external]

		if external and not loader_resident:
			addr, data = external[0]
			raise TransferError(f"can't write {len(data)} bytes external memory at 0x{addr:04x} without a second stage loader")

		# the loader has to be running to handle RW_MEMORY
		for addr, data in external:
			self.write(dev, "write external memory", RW_MEMORY, addr, data)

		self.cpucs(dev, chip, run=False)
		for addr, data in internal:
			self.write(dev, "write on-chip memory", RW_INTERNAL, addr, data)
		self.cpucs(dev, chip, run=True)

		logger.debug(f"Wrote {sum(len(data) for addr, data in internal)} bytes on-chip and {sum(len(data) for addr, data in external)} bytes external")

	def write_eeprom_record(self, dev, ee_addr: int, addr: int, data: bytes, last: bool = False) -> int:
		header = bytes([
			(len(data) >> 8) | (EEPROM_LAST_RECORD if last else 0),
			len(data) & 0xff,
			addr >> 8,
			addr & 0xff,
		])
		if ee_addr + len(header) + len(data) > 0x10000:
			raise TransferError("image does not fit into a 64K EEPROM")
		self.write(dev, "write EEPROM record", RW_EEPROM, ee_addr, header + data)
		return ee_addr + len(header) + len(data)

	def load_eeprom(self, dev, chip: ChipFamily, image, config: int):
		if config in ID_ONLY_FORMATS:
			for addr, data in image.chunks(MAX_CTRL_SIZE):
				self.write(dev, "write EEPROM", RW_EEPROM, addr, data)
			self.write(dev, "write EEPROM type byte", RW_EEPROM, 0, bytes([config]))
			return

		# make sure the EEPROM won't be used for booting, in case of problems writing it
		self.write(dev, "clear EEPROM type byte", RW_EEPROM, 0, b"\x00")

		ee_addr = chip.eeprom_data_offset
		for addr, data in image.chunks(EEPROM_RECORD_SIZE):
			for piece_addr, piece, external in chip.split(addr, data):
				if external:
					raise TransferError(f"EEPROM can't init {len(piece)} bytes external memory at 0x{piece_addr:04x}")
				ee_addr = self.write_eeprom_record(dev, ee_addr, piece_addr, piece)

		# last record takes the CPU out of reset once the boot ROM is done
		ee_addr = self.write_eeprom_record(dev, ee_addr, chip.cpucs, b"\x00", last=True)

		if chip in (ChipFamily.FX2, ChipFamily.FX2LP):
			self.write(dev, "write EEPROM config byte", RW_EEPROM, EEPROM_FX2_CONFIG_OFFSET, b"\x00")

		self.write(dev, "write EEPROM type byte", RW_EEPROM, 0, bytes([config]))
		logger.debug(f"Wrote {ee_addr} EEPROM bytes, type byte 0x{config:02x}")

	def transfer_image(self, dev, chip: ChipFamily, image, destination: Destination, config: int = None, loader_resident: bool = False):
		if destination == Destination.VOLATILE_MEMORY:
			self.load_ram(dev, chip, image, loader_resident)
		elif destination == Destination.PERSISTENT_STORE:
			if not loader_resident:
				raise TransferError("EEPROM writes need a running second stage loader")
			if config is None:
				raise TransferError("missing EEPROM configuration byte")
			self.load_eeprom(dev, chip, image, config)
		else:
			raise TransferError(f"unsupported destination {destination}")
