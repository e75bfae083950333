#!/usr/bin/env python

from setuptools import setup

with open('README.md') as readme_file:
    readme = readme_file.read()

with open('xpgfsck/VERSION') as f:
    version = f.read().lstrip().rstrip()

setup(
    name='xpgfsck',
    version=version,
    author='Netherlands Forensic Institute',
    description="PostgreSQL heap file checker and decoder of last resort",
    url='https://github.com/NetherlandsForensicInstitute/xpgfsck',
    long_description=readme+"\n\n",
    packages=['xpgfsck'],
    classifiers=[
        'License :: OSI Approved :: MIT License',
        'Development Status :: 4 - Beta',
        'Programming Language :: Python :: 3 :: Only',
        'Intended Audience :: Science/Research',
        'Topic :: Scientific/Engineering :: Information Analysis',
        'Environment :: Console'
        ],
    keywords='forensic database postgresql',
    entry_points={
        'console_scripts': ['xpgfsck=xpgfsck._cmdline:main'],
        },
    install_requires=[
        'bitstring<5',
        'xlsxwriter',
        'modgrammar'
    ],
    extras_require={
        'test': ['pytest'],
    },
    zip_safe=False,
    package_data={
        # include the VERSION file
        'xpgfsck': ['VERSION'],
    }
)
