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

import logging
from snagfxload.errors import ImageFormatError

logger = logging.getLogger("snagfxload")

"""
Intel HEX decoding for EZ-USB firmware images. The 8051 core has a 16-bit
address space, so extended address records are only accepted as long as
they keep the base address at 0.
"""

DATA = 0x00
END_OF_FILE = 0x01
EXT_SEGMENT_ADDR = 0x02
START_SEGMENT_ADDR = 0x03
EXT_LINEAR_ADDR = 0x04
START_LINEAR_ADDR = 0x05

ADDRESS_SPACE = 0x10000


class HexImage():
	def __init__(self, path: str = "<memory>"):
		self.path = path
		# (address, bytes) in file order, contiguous records merged
		self.segments = []

	def add(self, addr: int, data: bytes):
		if self.segments:
			last_addr, last_data = self.segments[-1]
			if last_addr + len(last_data) == addr:
				self.segments[-1] = (last_addr, last_data + data)
				return
		self.segments.append((addr, data))

	def chunks(self, max_size: int):
		for addr, data in self.segments:
			for offset in range(0, len(data), max_size):
				yield (addr + offset, data[offset:offset + max_size])

	def __len__(self):
		return sum(len(data) for addr, data in self.segments)

	def __str__(self):
		return f"{self.path}: {len(self)} bytes in {len(self.segments)} segment(s)"


def parse_record(line: str) -> tuple:
	if not line.startswith(":"):
		raise ValueError("missing start code ':'")
	try:
		record = bytes.fromhex(line[1:])
	except ValueError:
		raise ValueError("invalid hex digits") from None
	if len(record) < 5:
		raise ValueError("record too short")

	byte_count = record[0]
	if len(record) != byte_count + 5:
		raise ValueError(f"byte count {byte_count} does not match record length")
	if sum(record) & 0xff != 0:
		raise ValueError(f"bad checksum 0x{record[-1]:02x}")

	addr = int.from_bytes(record[1:3], "big")
	rectype = record[3]
	data = record[4:-1]
	return (rectype, addr, data)


def decode_ihex(lines, path: str = "<memory>") -> HexImage:
	image = HexImage(path)
	eof = False

	for lineno, line in enumerate(lines, start=1):
		line = line.strip()
		if line == "":
			continue
		if eof:
			raise ImageFormatError(path, lineno, "data after end of file record")

		try:
			(rectype, addr, data) = parse_record(line)
		except ValueError as e:
			raise ImageFormatError(path, lineno, str(e)) from None

		if rectype == DATA:
			if addr + len(data) > ADDRESS_SPACE:
				raise ImageFormatError(path, lineno, f"record at 0x{addr:04x} overflows the 16-bit address space")
			image.add(addr, data)
		elif rectype == END_OF_FILE:
			eof = True
		elif rectype in (EXT_SEGMENT_ADDR, EXT_LINEAR_ADDR):
			if len(data) != 2 or any(data):
				raise ImageFormatError(path, lineno, "extended addresses are not supported")
		elif rectype in (START_SEGMENT_ADDR, START_LINEAR_ADDR):
			pass
		else:
			raise ImageFormatError(path, lineno, f"unsupported record type 0x{rectype:02x}")

	if not eof:
		logger.warning(f"{path}: missing end of file record")

	return image


def load_ihex(path: str) -> HexImage:
	with open(path, "r", encoding="ascii", errors="replace") as file:
		image = decode_ihex(file, path)
	logger.debug(f"Loaded {image}")
	return image
