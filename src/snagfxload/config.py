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

import os
import yaml
import logging

from snagfxload.utils import cli_error, int_arg, parse_device_spec
from snagfxload.locator import DeviceCriterion
from snagfxload.deploy import DeploymentRequest, validate_request
from snagfxload.protocols.ezusb import ChipFamily

logger = logging.getLogger("snagfxload")

deploy_file_rules = {
	"device": (str,),
	"type": (str,),
	"ihex": (str,),
	"stage1": (str,),
	"config": (int, str),
	"paths-relative-to": (str,),
}

path_keys = ["ihex", "stage1"]


def check_deploy_config(deploy_config, path: str):
	if not isinstance(deploy_config, dict):
		cli_error(f"deployment file {path} did not evaluate to dict: {deploy_config}")

	for key, value in deploy_config.items():
		if key not in deploy_file_rules:
			cli_error(f"unknown key '{key}' in deployment file {path}, valid keys: {', '.join(deploy_file_rules)}")
		if isinstance(value, bool) or not isinstance(value, deploy_file_rules[key]):
			cli_error(f"invalid value for '{key}' in deployment file {path}: {value}")


def complete_image_paths(deploy_config: dict, this_file_path: str) -> None:
	paths_relative_to_conf = deploy_config.pop("paths-relative-to", "CWD")
	if paths_relative_to_conf == "CWD":
		return
	elif paths_relative_to_conf == "THIS_FILE":
		path_relative_to = os.path.dirname(this_file_path)
	else:
		path_relative_to = paths_relative_to_conf

	for key in path_keys:
		if key in deploy_config:
			deploy_config[key] = os.path.join(path_relative_to, deploy_config[key])


def read_deploy_file(path: str) -> dict:
	with open(path, "r") as file:
		deploy_config = yaml.safe_load(file)
	check_deploy_config(deploy_config, path)
	complete_image_paths(deploy_config, path)
	return deploy_config


def parse_config_byte(value) -> int:
	if isinstance(value, str):
		try:
			value = int_arg(value)
		except ValueError:
			cli_error(f"illegal config byte: {value}")
	if not 0 <= value <= 255:
		cli_error(f"illegal config byte: {value}")
	return value


def check_image_path(path: str):
	if not os.path.isfile(path):
		cli_error(f"no such image file: {path}")


def init_config(args) -> tuple:
	"""
	Merge deployment files and command line arguments, the latter taking
	precedence, into a device criterion and a validated deployment request.
	"""
	deploy_config = {}
	for path in args.deploy_file or []:
		deploy_config.update(read_deploy_file(path))

	for key in ["device", "type", "ihex", "stage1", "config"]:
		value = getattr(args, key, None)
		if value is not None:
			deploy_config[key] = value

	logger.debug(f"deploy config:\n{yaml.dump(deploy_config)}")

	criterion = DeviceCriterion()
	if "device" in deploy_config:
		criterion = parse_device_spec(deploy_config["device"])

	chip = None
	if "type" in deploy_config:
		try:
			chip = ChipFamily.from_name(deploy_config["type"])
		except ValueError as e:
			cli_error(str(e))

	config = None
	if "config" in deploy_config:
		config = parse_config_byte(deploy_config["config"])

	if "ihex" not in deploy_config:
		cli_error("missing hex file")

	for key in path_keys:
		if key in deploy_config:
			check_image_path(deploy_config[key])

	request = DeploymentRequest(
		ihex=deploy_config["ihex"],
		stage1=deploy_config.get("stage1"),
		config=config,
		chip=chip,
	)
	validate_request(request)

	return (criterion, request)
