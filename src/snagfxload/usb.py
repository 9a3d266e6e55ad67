import usb
import usb.core
import usb.util
import platform
import gc
import importlib
import sys
import logging
from dataclasses import dataclass, field

from snagfxload.errors import DeviceNotFoundError, DeviceOpenError

logger = logging.getLogger("snagfxload")

DISPLAY_STRING_FIELDS = (
	("manufacturer", "iManufacturer"),
	("product", "iProduct"),
	("serial", "iSerialNumber"),
)


@dataclass(frozen=True)
class DeviceDescriptor:
	vendor_id: int
	product_id: int
	bus: int
	port: int
	dev: object = field(default=None, compare=False, repr=False)

	@classmethod
	def from_usb(cls, dev):
		return cls(
			vendor_id=dev.idVendor,
			product_id=dev.idProduct,
			bus=dev.bus or 0,
			port=dev.port_number or 0,
			dev=dev,
		)

	def __str__(self):
		return f"Bus {self.bus:03d} Device {self.port:03d}: ID {self.vendor_id:04X}:{self.product_id:04X}"


@dataclass
class DisplayStrings:
	manufacturer: str = ""
	product: str = ""
	serial: str = ""

	def __str__(self):
		return f"{self.manufacturer} {self.product} {self.serial}"


class ResolvedDevice():
	"""
	An opened device with interface 0 claimed. There is exactly one owner,
	which must call close() once it is done with the device.
	"""
	def __init__(self, descriptor: DeviceDescriptor, dev, interface: int = 0):
		self.descriptor = descriptor
		self.dev = dev
		self.interface = interface
		self.closed = False

	def close(self):
		if self.closed:
			return
		self.closed = True
		try:
			usb.util.release_interface(self.dev, self.interface)
		except usb.core.USBError as e:
			# the device may already have renumerated with the new firmware
			logger.debug(f"Failed to release interface {self.interface} of {self.descriptor}: {e}")
		usb.util.dispose_resources(self.dev)
		logger.debug(f"Closed {self.descriptor}")

	def __enter__(self):
		return self

	def __exit__(self, exc_type, exc_value, traceback):
		self.close()

	def __str__(self):
		return str(self.descriptor)


def has_duplicate_root_hubs(devices: list) -> bool:
	root_hubs = [dev for dev in devices if dev.parent is None]
	bus_numbers = set([dev.bus for dev in root_hubs])
	return len(root_hubs) > len(bus_numbers)


class USBEnumerator():
	"""
	Thin layer over usb.core.find() giving ordered snapshots of the
	attached devices, opening them and reading their string descriptors.
	"""

	def __init__(self, backend=None):
		self.backend = backend

	def find_devices(self) -> list:
		return list(usb.core.find(find_all=True, backend=self.backend))

	def hard_rescan(self) -> list:
		"""
		Some versions of libusb for Windows assign the same bus number to
		two different root hubs when a reenumeration is issued on an
		existing libusb context. Dropping every device reference and
		reloading the backend forces a fresh context.
		"""
		gc.collect()
		importlib.invalidate_caches()
		if "usb.backend.libusb1" in sys.modules:
			importlib.reload(usb.backend.libusb1)
		return self.find_devices()

	def enumerate(self) -> list:
		try:
			devices = self.find_devices()
		except usb.core.NoBackendError as e:
			raise DeviceNotFoundError(f"no USB backend available: {e}") from e

		if platform.system() == "Windows" and has_duplicate_root_hubs(devices):
			logger.warning("Two root hubs share the same bus number, rescanning...")
			devices.clear()
			devices = self.hard_rescan()
			if has_duplicate_root_hubs(devices):
				raise DeviceNotFoundError("libusb bug detected! Two root hubs were assigned the same bus number! Please update libusb to a newer version")

		descriptors = [DeviceDescriptor.from_usb(dev) for dev in devices]
		logger.debug(f"Found {len(descriptors)} USB devices")
		return descriptors

	def open(self, descriptor: DeviceDescriptor) -> ResolvedDevice:
		dev = descriptor.dev
		interface = 0
		try:
			try:
				dev.get_active_configuration()
			except NotImplementedError:
				pass
			except usb.core.USBError:
				dev.set_configuration()

			try:
				if dev.is_kernel_driver_active(interface):
					logger.info(f"Detaching kernel driver from interface {interface} of {descriptor}")
					dev.detach_kernel_driver(interface)
			except NotImplementedError:
				pass

			usb.util.claim_interface(dev, interface)
		except usb.core.USBError as e:
			usb.util.dispose_resources(dev)
			raise DeviceOpenError(f"failed to open {descriptor} ({e}), please check that no other process holds it and that you have access rights to it") from e

		logger.debug(f"Opened {descriptor}")
		return ResolvedDevice(descriptor, dev, interface)

	def read_display_strings(self, descriptor: DeviceDescriptor) -> DisplayStrings:
		dev = descriptor.dev
		strings = DisplayStrings()
		for name, index_attr in DISPLAY_STRING_FIELDS:
			try:
				value = usb.util.get_string(dev, getattr(dev, index_attr))
			except (usb.core.USBError, ValueError, NotImplementedError) as e:
				logger.debug(f"Failed to read {name} string of {descriptor}: {e}")
				continue
			if value:
				setattr(strings, name, value)

		# get_string() opened the device behind our back
		usb.util.dispose_resources(dev)
		return strings
