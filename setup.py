from setuptools import find_packages, setup  # type: ignore

setup(
    name="reqprof",
    version="0.1.0",
    description="Request-scoped profiling sessions for WSGI applications.",
    author="changlehung",
    author_email="changlehung@gmail.com",
    python_requires=">=3.10",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "rich",
        "rich-argparse",
        "typing_extensions",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "reqprof = reqprof.__main__:main",
        ],
    },
)
