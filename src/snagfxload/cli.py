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

import sys
import argparse
import importlib.resources
import logging
from snagfxload import __version__
from snagfxload.config import init_config
from snagfxload.deploy import Deployer, locate_and_deploy
from snagfxload.errors import SnagfxError
from snagfxload.locator import DeviceLocator, InteractiveSelection
from snagfxload.protocols.ezusb import ChipFamily, EzusbTransfer
from snagfxload.usb import USBEnumerator
from snagfxload.utils import cli_error, prettify_criterion


def build_parser() -> argparse.ArgumentParser:
	example = """Examples:
	# program fw.hex to the FIRST device with given vid
	snagfxload -D 04b4:@0 -I fw.hex
	# program fw.hex to the SECOND device at given bus
	snagfxload -D 004.@1 -I fw.hex
	# program vid:pid info to EEPROM
	snagfxload -t fx2lp -I vidpid.hex -c 0xC0 -s Vend_Ax.hex
	# program whole firmware to EEPROM
	snagfxload -t fx2lp -I fwfile.hex -c 0xC2 -s Vend_Ax.hex
	# pick the device from a list
	snagfxload -I fw.hex
"""
	parser = argparse.ArgumentParser(
		prog="snagfxload",
		epilog=example,
		formatter_class=argparse.RawDescriptionHelpFormatter,
	)
	mandatory = parser.add_argument_group("Mandatory")
	mandatory.add_argument("-I", "--ihex", help="program hex file", metavar="file")
	optional = parser.add_argument_group("Optional")
	optional.add_argument(
		"-D",
		"--device",
		help="select device by vid:pid or bus.port, an optional @index picks among several matches; list devices and prompt if omitted",
		metavar="vid:pid|bus.port[@index]",
	)
	optional.add_argument(
		"-t", "--type", help="microcontroller type", choices=ChipFamily.names()
	)
	optional.add_argument(
		"-s",
		"--stage1",
		help="program stage1 loader to write a file into EEPROM",
		metavar="loader",
	)
	optional.add_argument(
		"-c",
		"--config",
		help="program first byte of EEPROM with either 0xC0 or 0xC2",
		metavar="byte",
	)
	optional.add_argument(
		"-f",
		"--deploy-file",
		help="deployment configuration, passed as a yaml file",
		metavar="deploy.yaml",
		action="append",
	)
	optional.add_argument(
		"-v", "--verbose", help="show verbose messages", action="count", default=0
	)
	optional.add_argument(
		"--loglevel",
		help="set loglevel",
		choices=["silent", "info", "debug"],
		default="silent",
	)
	optional.add_argument("--logfile", help="set logfile", default="fxload.log")
	utilargs = parser.add_argument_group("Utilities")
	utilargs.add_argument("-V", "--version", help="show version", action="store_true")
	utilargs.add_argument(
		"--list", help="list attached USB devices", action="store_true"
	)
	utilargs.add_argument(
		"--list-types", help="list supported microcontroller types", action="store_true"
	)
	utilargs.add_argument(
		"--udev", help="get required udev rules for snagfxload", action="store_true"
	)
	return parser


def setup_logging(args) -> logging.Logger:
	logger = logging.getLogger("snagfxload")
	logger.setLevel(logging.DEBUG)
	log_formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")

	stdout_handler = logging.StreamHandler(sys.stdout)
	stdout_handler.setLevel(logging.INFO)
	stdout_handler.setFormatter(log_formatter)
	logger.addHandler(stdout_handler)

	if args.loglevel != "silent":
		log_handler = logging.FileHandler(args.logfile, encoding="utf-8")
		log_handler.setFormatter(log_formatter)
		if args.loglevel == "debug":
			log_handler.setLevel(logging.DEBUG)
		elif args.loglevel == "info":
			log_handler.setLevel(logging.INFO)
		logger.addHandler(log_handler)

	return logger


def cli(argv=None):
	parser = build_parser()
	args = parser.parse_args(argv)

	# show version
	if args.version:
		print(f"Snagfxload v{__version__}")
		sys.exit(0)

	# print udev rules
	if args.udev:
		print(importlib.resources.files("snagfxload").joinpath("50-snagfxload.rules").read_text())
		sys.exit(0)

	# show supported types
	if args.list_types:
		[print(name) for name in ChipFamily.names()]
		sys.exit(0)

	logger = setup_logging(args)
	enumerator = USBEnumerator()

	try:
		if args.list:
			InteractiveSelection().list_devices(enumerator.enumerate(), enumerator)
			sys.exit(0)

		if args.ihex is None and args.deploy_file is None:
			cli_error("missing hex file")

		(criterion, request) = init_config(args)

		locator = DeviceLocator(enumerator, verbose=args.verbose)
		deployer = Deployer(EzusbTransfer(), verbose=args.verbose)

		logger.info(f"Deploying {request.ihex} to {prettify_criterion(criterion)}")
		locate_and_deploy(locator, deployer, criterion, request)
	except SnagfxError as e:
		logger.error(str(e))
		sys.exit(e.exit_code)

	if args.loglevel != "silent":
		logger.info(f"Logs were appended to {args.logfile}")


if __name__ == "__main__":
	cli()
