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

from snagfxload.errors import InvalidCombinationError, TransferError
from snagfxload.firmware.ihex import load_ihex
from snagfxload.protocols.ezusb import ChipFamily, DEFAULT_CHIP_FAMILY, Destination

logger = logging.getLogger("snagfxload")


@dataclass(frozen=True)
class DeploymentRequest:
	ihex: str
	stage1: str = None
	config: int = None
	chip: ChipFamily = None


@dataclass(frozen=True)
class TransferStep:
	path: str
	destination: Destination
	final_stage: bool
	loader_resident: bool = False
	config: int = None

	def __str__(self):
		if self.config is not None:
			return f"{self.path} -> {self.destination.value} (config 0x{self.config:02x})"
		return f"{self.path} -> {self.destination.value}"


def validate_request(request: DeploymentRequest):
	if not request.ihex:
		raise InvalidCombinationError("missing hex file")

	if request.config is None:
		return

	if not 0 <= request.config <= 255:
		raise InvalidCombinationError(f"illegal config byte: {request.config}")
	if request.chip is None:
		raise InvalidCombinationError("must specify microcontroller type to write EEPROM!")
	if not request.stage1:
		raise InvalidCombinationError("need 2nd stage loader and firmware to write EEPROM!")


def resolve_chip(request: DeploymentRequest) -> ChipFamily:
	if request.chip is None:
		return DEFAULT_CHIP_FAMILY
	return request.chip


def plan_deployment(request: DeploymentRequest) -> list:
	if not request.stage1:
		return [TransferStep(request.ihex, Destination.VOLATILE_MEMORY, final_stage=True)]

	plan = [TransferStep(request.stage1, Destination.VOLATILE_MEMORY, final_stage=False)]
	if request.config is None:
		plan.append(TransferStep(request.ihex, Destination.VOLATILE_MEMORY, final_stage=True, loader_resident=True))
	else:
		plan.append(TransferStep(request.ihex, Destination.PERSISTENT_STORE, final_stage=True, loader_resident=True, config=request.config))
	return plan


def stage_label(step: TransferStep, plan_len: int) -> str:
	if plan_len == 1:
		return "single stage:  load on-chip memory"
	if not step.final_stage:
		return "1st stage:  load 2nd stage loader"
	if step.destination == Destination.PERSISTENT_STORE:
		return "2nd stage:  write EEPROM"
	return "2nd stage:  load external and on-chip memory"


class Deployer():
	"""
	Runs a deployment plan on a resolved device, one transfer at a time.

	The first failing step ends the deployment. Nothing is undone: a device
	left running the second stage loader without its final image is a
	known, accepted state, and the operator simply reruns the whole
	deployment.
	"""
	def __init__(self, transfer, image_loader=load_ihex, verbose: int = 0):
		self.transfer = transfer
		self.image_loader = image_loader
		self.verbose = verbose

	def log(self, msg: str):
		logger.log(logging.INFO if self.verbose else logging.DEBUG, msg)

	def load_images(self, plan: list) -> list:
		images = []
		for step in plan:
			try:
				images.append(self.image_loader(step.path))
			except OSError as e:
				raise TransferError(f"failed to read {step.path}: {e}") from e
		return images

	def deploy(self, request: DeploymentRequest, device):
		try:
			validate_request(request)
			chip = resolve_chip(request)
			plan = plan_deployment(request)
			# every image is decoded before the device is touched
			images = self.load_images(plan)

			for step, image in zip(plan, images):
				self.log(stage_label(step, len(plan)))
				logger.debug(f"Transferring {step} on {chip.value} device {device}")
				try:
					self.transfer.transfer_image(device.dev, chip, image, step.destination, config=step.config, loader_resident=step.loader_resident)
				except TransferError:
					if step.loader_resident:
						logger.warning(f"Device {device} is left running the 2nd stage loader")
					raise

			logger.info(f"Done deploying {request.ihex}")
		finally:
			device.close()


def locate_and_deploy(locator, deployer: Deployer, criterion, request: DeploymentRequest):
	validate_request(request)
	device = locator.resolve(criterion)
	deployer.deploy(request, device)
