import unittest
from unittest.mock import MagicMock, call

import usb.core

from snagfxload.errors import TransferError
from snagfxload.firmware.ihex import HexImage
from snagfxload.protocols.ezusb import (
	RW_EEPROM,
	RW_INTERNAL,
	RW_MEMORY,
	VENDOR_OUT,
	ChipFamily,
	Destination,
	EzusbTransfer,
)

TIMEOUT = 1000


def make_image(*segments) -> HexImage:
	image = HexImage()
	for addr, data in segments:
		image.add(addr, data)
	return image


def ctrl(request: int, addr: int, data: bytes):
	return call(VENDOR_OUT, request, wValue=addr, wIndex=0, data_or_wLength=data, timeout=TIMEOUT)


class TestChipFamily(unittest.TestCase):
	def test_from_name(self) -> None:
		self.assertEqual(ChipFamily.from_name("fx2lp"), ChipFamily.FX2LP)
		self.assertEqual(ChipFamily.from_name("AN21"), ChipFamily.AN21)
		with self.assertRaises(ValueError):
			ChipFamily.from_name("fx3")

	def test_cpucs(self) -> None:
		self.assertEqual(ChipFamily.AN21.cpucs, 0x7f92)
		self.assertEqual(ChipFamily.FX.cpucs, 0x7f92)
		self.assertEqual(ChipFamily.FX2.cpucs, 0xe600)
		self.assertEqual(ChipFamily.FX2LP.cpucs, 0xe600)

	def test_split_at_boundary(self) -> None:
		pieces = list(ChipFamily.FX2LP.split(0x3ffe, b"\x01\x02\x03\x04"))
		self.assertEqual(pieces, [(0x3ffe, b"\x01\x02", False), (0x4000, b"\x03\x04", True)])

	def test_split_into_data_ram(self) -> None:
		pieces = list(ChipFamily.FX2.split(0xdfff, b"\x01\x02"))
		self.assertEqual(pieces, [(0xdfff, b"\x01", True), (0xe000, b"\x02", False)])

	def test_split_internal(self) -> None:
		self.assertEqual(list(ChipFamily.FX.split(0x100, b"\xaa")), [(0x100, b"\xaa", False)])
		self.assertEqual(list(ChipFamily.FX.split(0x1b40, b"\xaa")), [(0x1b40, b"\xaa", True)])


class TestEzusbTransfer(unittest.TestCase):
	def setUp(self) -> None:
		self.dev = MagicMock()
		self.dev.ctrl_transfer.side_effect = lambda *args, **kwargs: len(kwargs["data_or_wLength"])
		self.transfer = EzusbTransfer(timeout=TIMEOUT)

	def test_ram_single_stage(self) -> None:
		image = make_image((0x0000, b"\x02\x01\x00"), (0x0100, b"\x80\xfe"))
		self.transfer.transfer_image(self.dev, ChipFamily.FX2, image, Destination.VOLATILE_MEMORY)
		self.assertEqual(self.dev.ctrl_transfer.call_args_list, [
			ctrl(RW_INTERNAL, 0xe600, b"\x01"),
			ctrl(RW_INTERNAL, 0x0000, b"\x02\x01\x00"),
			ctrl(RW_INTERNAL, 0x0100, b"\x80\xfe"),
			ctrl(RW_INTERNAL, 0xe600, b"\x00"),
		])

	def test_ram_external_without_loader(self) -> None:
		image = make_image((0x0000, b"\x02"), (0x8000, b"\x55"))
		with self.assertRaises(TransferError):
			self.transfer.transfer_image(self.dev, ChipFamily.FX2, image, Destination.VOLATILE_MEMORY)
		self.dev.ctrl_transfer.assert_not_called()

	def test_ram_with_loader(self) -> None:
		image = make_image((0x0000, b"\x02"), (0x8000, b"\x55"))
		self.transfer.transfer_image(self.dev, ChipFamily.FX, image, Destination.VOLATILE_MEMORY, loader_resident=True)
		self.assertEqual(self.dev.ctrl_transfer.call_args_list, [
			ctrl(RW_MEMORY, 0x8000, b"\x55"),
			ctrl(RW_INTERNAL, 0x7f92, b"\x01"),
			ctrl(RW_INTERNAL, 0x0000, b"\x02"),
			ctrl(RW_INTERNAL, 0x7f92, b"\x00"),
		])

	def test_large_segment_split(self) -> None:
		image = make_image((0x0000, bytes(5000)))
		self.transfer.load_ram(self.dev, ChipFamily.FX2LP, image)
		writes = self.dev.ctrl_transfer.call_args_list[1:-1]
		self.assertEqual(writes, [
			ctrl(RW_INTERNAL, 0x0000, bytes(4096)),
			ctrl(RW_INTERNAL, 0x1000, bytes(904)),
		])

	def test_disconnect_on_cpu_start(self) -> None:
		def ctrl_transfer(*args, **kwargs):
			if kwargs["wValue"] == 0xe600 and kwargs["data_or_wLength"] == b"\x00":
				raise usb.core.USBError("Input/Output Error", errno=5)
			return len(kwargs["data_or_wLength"])

		self.dev.ctrl_transfer.side_effect = ctrl_transfer
		self.transfer.load_ram(self.dev, ChipFamily.FX2, make_image((0x0, b"\x02")))
		self.assertEqual(self.dev.ctrl_transfer.call_count, 3)

	def test_usb_error(self) -> None:
		self.dev.ctrl_transfer.side_effect = usb.core.USBError("Pipe error", errno=32)
		with self.assertRaises(TransferError) as ctx:
			self.transfer.load_ram(self.dev, ChipFamily.FX2, make_image((0x0, b"\x02")))
		self.assertIn("stop CPU", ctx.exception.detail)
		self.assertEqual(self.dev.ctrl_transfer.call_count, 1)

	def test_short_write(self) -> None:
		self.dev.ctrl_transfer.side_effect = None
		self.dev.ctrl_transfer.return_value = 0
		with self.assertRaises(TransferError):
			self.transfer.load_ram(self.dev, ChipFamily.FX2, make_image((0x0, b"\x02")))

	def test_eeprom_boot_image(self) -> None:
		image = make_image((0x0000, b"\x02\x01\x00"))
		self.transfer.transfer_image(self.dev, ChipFamily.FX2, image, Destination.PERSISTENT_STORE, config=0xc2, loader_resident=True)
		self.assertEqual(self.dev.ctrl_transfer.call_args_list, [
			ctrl(RW_EEPROM, 0, b"\x00"),
			ctrl(RW_EEPROM, 8, b"\x00\x03\x00\x00\x02\x01\x00"),
			ctrl(RW_EEPROM, 15, b"\x80\x01\xe6\x00\x00"),
			ctrl(RW_EEPROM, 7, b"\x00"),
			ctrl(RW_EEPROM, 0, b"\xc2"),
		])

	def test_eeprom_boot_image_an21(self) -> None:
		image = make_image((0x0010, b"\xaa"))
		self.transfer.load_eeprom(self.dev, ChipFamily.AN21, image, 0xb2)
		self.assertEqual(self.dev.ctrl_transfer.call_args_list, [
			ctrl(RW_EEPROM, 0, b"\x00"),
			ctrl(RW_EEPROM, 7, b"\x00\x01\x00\x10\xaa"),
			ctrl(RW_EEPROM, 12, b"\x80\x01\x7f\x92\x00"),
			ctrl(RW_EEPROM, 0, b"\xb2"),
		])

	def test_eeprom_records_limited(self) -> None:
		image = make_image((0x0000, bytes(1500)))
		self.transfer.load_eeprom(self.dev, ChipFamily.FX2LP, image, 0xc2)
		records = self.dev.ctrl_transfer.call_args_list[1:3]
		self.assertEqual(records[0], ctrl(RW_EEPROM, 8, b"\x03\xff\x00\x00" + bytes(1023)))
		self.assertEqual(records[1], ctrl(RW_EEPROM, 8 + 4 + 1023, b"\x01\xdd\x03\xff" + bytes(477)))

	def test_eeprom_external_rejected(self) -> None:
		image = make_image((0x8000, b"\x01"))
		with self.assertRaises(TransferError):
			self.transfer.load_eeprom(self.dev, ChipFamily.FX2, image, 0xc2)

	def test_eeprom_id_only(self) -> None:
		header = b"\xc0\xb4\x04\x13\x86\x01\x00\x00"
		image = make_image((0x0000, header))
		self.transfer.transfer_image(self.dev, ChipFamily.FX2LP, image, Destination.PERSISTENT_STORE, config=0xc0, loader_resident=True)
		self.assertEqual(self.dev.ctrl_transfer.call_args_list, [
			ctrl(RW_EEPROM, 0, header),
			ctrl(RW_EEPROM, 0, b"\xc0"),
		])

	def test_eeprom_needs_loader(self) -> None:
		with self.assertRaises(TransferError):
			self.transfer.transfer_image(self.dev, ChipFamily.FX2, make_image((0, b"\x00")), Destination.PERSISTENT_STORE, config=0xc2)
		self.dev.ctrl_transfer.assert_not_called()


if __name__ == "__main__":
	unittest.main()
