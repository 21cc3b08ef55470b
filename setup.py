from setuptools import setup, find_packages

# Read requirements from requirements.txt
with open('requirements.txt') as f:
    requirements = [line for line in f.read().splitlines() if line and not line.startswith('#')]

# Get the long description from the README file
with open('README.md', 'r', encoding='utf-8') as f:
    long_description = f.read()

setup(
    name="tableau-migrator",
    version="1.0.0",
    description="Tool for migrating projects, permissions and workbooks between Tableau Server sites",
    long_description=long_description,
    long_description_content_type='text/markdown',
    author="Codehive Inc",
    packages=find_packages(include=['tableau_migrator', 'tableau_migrator.*']),
    include_package_data=True,
    install_requires=requirements,
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        "console_scripts": [
            "tableau-migrator=tableau_migrator.main:main",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
)
