from setuptools import setup, find_packages

# Basic information
VERSION = '0.1.0'
DESCRIPTION = 'A CLI tool for archiving serialized fiction into a local database'
LONG_DESCRIPTION = (
    'Archives stories from Archive of Our Own, Royal Road, FanFiction.net, '
    'XenForo forums and Katalepsis into SQLite, and keeps them up to date.'
)

# Read from requirements.txt, but filter out comments and empty lines
try:
    with open('requirements.txt', encoding='utf-8') as f:
        install_requires = [line.strip() for line in f if line.strip() and not line.startswith('#')]
except FileNotFoundError:
    install_requires = ['requests', 'beautifulsoup4', 'click', 'markdownify']

setup(
    name='story-archiver',
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    packages=find_packages(include=['story_archiver', 'story_archiver.*']),
    install_requires=install_requires,
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'archiver = story_archiver.cli.main:archiver',
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: End Users/Desktop',
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
        'Topic :: Utilities',
    ],
    python_requires='>=3.8',
)
