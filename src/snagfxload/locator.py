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
from dataclasses import dataclass

from snagfxload.errors import DeviceNotFoundError

logger = logging.getLogger("snagfxload")

"""
Resolving an operator-supplied device criterion against the attached USB
devices. A criterion selects either by vendor/product id or by bus/port
topology; with neither given the operator picks a device from a listing.
"""


@dataclass(frozen=True)
class DeviceCriterion:
	vendor_id: int = 0
	product_id: int = 0
	bus: int = 0
	port: int = 0
	index: int = 0

	@property
	def interactive(self) -> bool:
		return self.vendor_id == 0 and self.product_id == 0 and self.bus == 0 and self.port == 0


def device_matches(desc, criterion: DeviceCriterion) -> bool:
	"""
	A device matches on topology OR on ids, whichever is given. When both a
	bus/port and a vid:pid are set, matching either one is enough.
	A zero port or product id is a wildcard.
	"""
	topology_match = desc.bus == criterion.bus and (desc.port == criterion.port or criterion.port == 0)
	id_match = desc.vendor_id == criterion.vendor_id and (desc.product_id == criterion.product_id or criterion.product_id == 0)
	return topology_match or id_match


class CriterionSelection():
	def __init__(self, criterion: DeviceCriterion):
		self.criterion = criterion

	def select(self, snapshot: list, enumerator=None):
		nr_found = 0
		for desc in snapshot:
			if not device_matches(desc, self.criterion):
				continue
			if nr_found == self.criterion.index:
				return desc
			nr_found += 1

		raise DeviceNotFoundError(f"found {nr_found} matching device(s), none at index {self.criterion.index}")


class InteractiveSelection():
	"""
	Lists every attached device and lets the operator pick one by its
	position in the listing. Blocks on input with no timeout.
	"""
	def __init__(self, input_func=input, output=print):
		self.input_func = input_func
		self.output = output

	def list_devices(self, snapshot: list, enumerator) -> None:
		for i, desc in enumerate(snapshot):
			strings = enumerator.read_display_strings(desc)
			self.output(f"{i}: {desc} {strings}")

	def select(self, snapshot: list, enumerator):
		if len(snapshot) == 0:
			raise DeviceNotFoundError("no USB device attached")

		self.list_devices(snapshot, enumerator)

		try:
			answer = self.input_func(f"Please select device to configure [0-{len(snapshot) - 1}]: ")
		except EOFError:
			raise DeviceNotFoundError("no device selected") from None

		try:
			sel = int(answer.strip())
		except ValueError:
			raise DeviceNotFoundError(f"invalid device selection: {answer.strip()!r}") from None

		if sel < 0 or sel >= len(snapshot):
			raise DeviceNotFoundError(f"device selection out of bound: {sel}")

		return snapshot[sel]


class DeviceLocator():
	def __init__(self, enumerator, interactive_source=None, verbose: int = 0):
		self.enumerator = enumerator
		if interactive_source is None:
			interactive_source = InteractiveSelection()
		self.interactive_source = interactive_source
		self.verbose = verbose

	def log(self, msg: str):
		logger.log(logging.INFO if self.verbose else logging.DEBUG, msg)

	def selection_source(self, criterion: DeviceCriterion):
		if criterion.interactive:
			return self.interactive_source
		return CriterionSelection(criterion)

	def resolve(self, criterion: DeviceCriterion):
		source = self.selection_source(criterion)
		snapshot = self.enumerator.enumerate()
		self.log(f"Scanning {len(snapshot)} USB device(s)")
		try:
			found = source.select(snapshot, self.enumerator)
		finally:
			# only the chosen descriptor may outlive the enumeration pass
			del snapshot

		self.log(f"Selected {found}")
		return self.enumerator.open(found)
