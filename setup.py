from setuptools import find_packages, setup

setup(
    name="gdrive-ftp",
    version="0.1.0",
    description="Serve Google Drive over FTP with background uploads",
    author="Daniel T Sasser II",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "cachetools>=5.0.0",
        "google-api-python-client>=2.100.0",
        "google-auth>=2.20.0",
        "google-auth-oauthlib>=1.0.0",
        "pyftpdlib>=1.5.7",
        "requests>=2.28.0",
    ],
    entry_points={
        "console_scripts": [
            "gdrive-ftp=gdrive_ftp.__main__:main",
        ],
    },
    python_requires=">=3.10",
    extras_require={
        "dev": [
            "pytest",
            "build",
            "twine",
        ],
    },
)
