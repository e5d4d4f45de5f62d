# SPDX-License-Identifier: AGPL-3.0-or-later
import setuptools


setuptools.setup(
    name='ddr3spdedit',
    version='0.0.0',
    author='Ivan Mironov',
    author_email='mironov.ivan@gmail.com',
    license='AGPL-3.0-or-later',
    description='Tool for modifying DDR3 SPD images with XMP profiles',
    packages=('ddr3spdedit', ),
    python_requires='~=3.9',
    install_requires=(
        'click',
    ),
    extras_require={
        'test': (
            'pytest',
        ),
    },
    entry_points={
        'console_scripts': [
            'ddr3spdedit=ddr3spdedit.main:cli_main',
        ],
    },
)
