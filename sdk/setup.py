from setuptools import setup, find_packages

setup(
    name="storage_admin",
    version="0.1.0",
    packages=find_packages(),
    install_requires=["httpx>=0.26.0"],
    entry_points={
        "console_scripts": [
            "storage-admin=storage_admin.cli:main",
        ],
    },
)
