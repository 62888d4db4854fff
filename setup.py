import setuptools

with open("README.rst", "r") as fh:
    long_description = fh.read()

setuptools.setup(
    name="notable-notes",
    version="0.1.0",
    description="Helpers for managing a Notable data directory of Markdown notes.",
    long_description=long_description,
    long_description_content_type="text/x-rst",
    packages=setuptools.find_packages('src'),
    package_dir={'': 'src'},
    entry_points={
        'console_scripts': [
            'notable = notable.cli:main'
        ]
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    install_requires=[
        'pyyaml>=5.3.1',
        'terminaltables',
    ],
    extras_require={
        'test': [
            'freezegun',
            'pyfakefs',
            'pytest',
        ],
    },
    python_requires='>=3.7',
)
