"""Pinned build descriptions for the kernel and the bootloader.

Everything that would otherwise vary between two builds is fixed here: the
upstream revision (by explicit URL), the patch sequence and the build
timestamp/identity the toolchain embeds.
"""

from __future__ import annotations

from pathlib import Path

from krebuild.models import ArtifactSpec, BuildSpec, CommandSpec

# ---------------------------------------------------------------------------
# Linux kernel, arm64, Raspberry Pi boards
# ---------------------------------------------------------------------------

KERNEL_URL = "https://cdn.kernel.org/pub/linux/kernel/v6.x/linux-6.8.tar.xz"

KERNEL_PATCHES: tuple[str, ...] = (
    "0001-Revert-add-index-to-the-ethernet-alias.patch",
    # serial
    "0101-expose-UART0-ttyAMA0-on-GPIO-14-15-disable-UART1-tty.patch",
    "0102-expose-UART0-ttyAMA0-on-GPIO-14-15-disable-UART1-tty.patch",
    "0103-expose-UART0-ttyAMA0-on-GPIO-14-15-disable-UART1-tty.patch",
    "0104-bluetooth.patch",
    "0105-bluetooth-cm4.patch",
    # spi
    "0201-enable-spidev.patch",
    # logo
    "0001-logo.patch",
)

# Features the boards need, forced on regardless of upstream defconfig.
KERNEL_CONFIG_ADDENDUM = """\
CONFIG_SQUASHFS=y
CONFIG_SQUASHFS_XZ=y
CONFIG_SQUASHFS_ZSTD=y
CONFIG_SERIAL_AMBA_PL011=y
CONFIG_SERIAL_AMBA_PL011_CONSOLE=y
CONFIG_SERIAL_8250_BCM2835AUX=y
CONFIG_BCM2835_WDT=y
CONFIG_HW_RANDOM_BCM2835=y
CONFIG_MMC_BCM2835=y
CONFIG_MMC_SDHCI_IPROC=y
CONFIG_BCMGENET=y
CONFIG_BROADCOM_PHY=y
CONFIG_USB_LAN78XX=y
CONFIG_USB_NET_SMSC95XX=y
CONFIG_SPI_BCM2835=y
CONFIG_SPI_SPIDEV=y
CONFIG_IPV6=y
CONFIG_CGROUPS=y
"""

KERNEL_BUILD_ENV = {
    "KBUILD_BUILD_USER": "krebuild",
    "KBUILD_BUILD_HOST": "container",
    "KBUILD_BUILD_TIMESTAMP": "Wed Mar  1 20:57:29 UTC 2017",
}

_DTS = "arch/arm64/boot/dts/broadcom"

KERNEL = BuildSpec(
    name="kernel",
    source_url=KERNEL_URL,
    patches=KERNEL_PATCHES,
    arch="arm64",
    cross_compile="aarch64-linux-gnu-",
    defconfig="defconfig",
    # Answer n instead of m wherever Kconfig allows it.
    config_prepare_targets=("mod2noconfig",),
    config_addendum=KERNEL_CONFIG_ADDENDUM,
    config_reconcile="olddefconfig",
    make_targets=("Image.gz", "dtbs", "modules"),
    build_env=KERNEL_BUILD_ENV,
    install_modules=True,
    modules_destination=Path("lib/modules"),
    artifacts=(
        ArtifactSpec("vmlinuz", "arch/arm64/boot/Image", Path("vmlinuz")),
        ArtifactSpec(
            "bcm2710-rpi-3-b.dtb",
            f"{_DTS}/bcm2837-rpi-3-b.dtb",
            Path("bcm2710-rpi-3-b.dtb"),
        ),
        ArtifactSpec(
            "bcm2710-rpi-3-b-plus.dtb",
            f"{_DTS}/bcm2837-rpi-3-b-plus.dtb",
            Path("bcm2710-rpi-3-b-plus.dtb"),
        ),
        ArtifactSpec(
            "bcm2710-rpi-cm3.dtb",
            f"{_DTS}/bcm2837-rpi-cm3-io3.dtb",
            Path("bcm2710-rpi-cm3.dtb"),
        ),
        ArtifactSpec(
            "bcm2710-rpi-zero-2-w.dtb",
            f"{_DTS}/bcm2837-rpi-zero-2-w.dtb",
            Path("bcm2710-rpi-zero-2.dtb"),
        ),
        ArtifactSpec(
            "bcm2711-rpi-4-b.dtb",
            f"{_DTS}/bcm2711-rpi-4-b.dtb",
            Path("bcm2711-rpi-4-b.dtb"),
        ),
    ),
    base_image="debian:bookworm",
    packages=(
        "crossbuild-essential-arm64",
        "bc",
        "libssl-dev",
        "bison",
        "flex",
        "kmod",
        "patch",
        "xz-utils",
        "ca-certificates",
        "python3",
    ),
)

# ---------------------------------------------------------------------------
# u-boot, pinned by commit
# ---------------------------------------------------------------------------

UBOOT_REV = "4eb7c5030d3f3c707c02a64dc8ea90de3da89928"
UBOOT_SOURCE_DATE_EPOCH = 1676844210
UBOOT_URL = f"https://github.com/u-boot/u-boot/archive/{UBOOT_REV}.zip"

UBOOT = BuildSpec(
    name="uboot",
    source_url=UBOOT_URL,
    source_dir=f"u-boot-{UBOOT_REV}",
    patches=("0001-uboot-quadra.patch",),
    inputs=("boot.cmd",),
    arch="arm",
    cross_compile="aarch64-linux-gnu-",
    defconfig="tanix_tx6_defconfig",
    # CONFIG_BOARD_LATE_INIT probes CROS_EC, which the board does not have.
    config_addendum="CONFIG_BOARD_LATE_INIT=n\n",
    config_reconcile=None,
    make_targets=("u-boot.bin",),
    build_env={"SOURCE_DATE_EPOCH": str(UBOOT_SOURCE_DATE_EPOCH)},
    post_build=(
        CommandSpec(
            argv=(
                "./tools/mkimage",
                "-A", "arm",
                "-O", "linux",
                "-T", "script",
                "-C", "none",
                "-a", "0",
                "-e", "0",
                "-n", "Boot Script",
                "-d", "{input_dir}/boot.cmd",
                "boot.scr",
            ),
            env={"SOURCE_DATE_EPOCH": "1600000000"},
        ),
    ),
    artifacts=(
        ArtifactSpec("u-boot.bin", "u-boot.bin", Path("u-boot.bin")),
        ArtifactSpec("boot.scr", "boot.scr", Path("boot.scr")),
    ),
    base_image="debian:bookworm",
    packages=(
        "crossbuild-essential-armhf",
        "crossbuild-essential-arm64",
        "python3",
        "python3-setuptools",
        "python3-dev",
        "swig",
        "bc",
        "libssl-dev",
        "bison",
        "flex",
        "unzip",
        "patch",
        "ca-certificates",
    ),
)

PRESETS: dict[str, BuildSpec] = {
    KERNEL.name: KERNEL,
    UBOOT.name: UBOOT,
}
