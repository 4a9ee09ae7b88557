"""
Setup script for the NetPulse engine.

Usage:
    pip install -e .            # engine + CLI
    pip install -e ".[test]"    # with the test tooling

Installs the ``netpulse-engine`` command.
"""
from setuptools import setup

setup(
    name='netpulse-engine',
    version='1.0.0',
    description='LAN device discovery, internet speed test and per-IP traffic estimation',
    python_requires='>=3.9',
    packages=[
        'app',
        'config',
        'engine',
        'storage',
    ],
    py_modules=['netpulse_engine'],
    install_requires=[
        'psutil>=5.9',
    ],
    extras_require={
        'test': [
            'pytest>=7.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'netpulse-engine=netpulse_engine:main',
        ],
    },
)
