from setuptools import setup, find_packages


def scm_version():
    def local_scheme(version):
        return version.format_choice("+{node}", "+{node}.dirty")
    return {
        "relative_to": __file__,
        "version_scheme": "guess-next-dev",
        "local_scheme": local_scheme,
        "fallback_version": "0.1.0",
    }


setup(
    name="dbmeter",
    use_scm_version=scm_version(),
    description="Driver and command-line tool for PCB Artists I2C decibel meters",
    license="0-clause BSD License",
    python_requires=">=3.10",
    setup_requires=[
        "setuptools",
        "setuptools_scm"
    ],
    install_requires=[
        "smbus2>=0.4",
        "aiohttp",
        "yarl",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    packages=find_packages(exclude=["tests", "tests.*"]),
    entry_points={
        "console_scripts": [
            "dbmeter = dbmeter.cli:run_main"
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'License :: OSI Approved', # ' :: 0-clause BSD License', (not in PyPI)
        'Topic :: System :: Hardware :: Hardware Drivers',
        'Topic :: Multimedia :: Sound/Audio :: Analysis',
    ],
)
