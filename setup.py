from setuptools import setup, find_packages
import os

# Read the contents of README.md
this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

# Define package version
VERSION = '1.0.0'

# Common dependencies
install_requires = [
    'requests>=2.28.1',
    'urllib3>=1.26.0',
    'pyyaml>=6.0',
    'psutil>=5.9.0',
    'pydantic>=2.0',
    'python-dotenv>=1.0.0',
]

extras_require = {
    'test': [
        'pytest>=7.2.0',
    ],
}

# Development dependencies
extras_require['dev'] = extras_require['test'] + [
    'pytest-cov>=4.0.0',
    'flake8>=6.0.0',
]

setup(
    name='fixpanic-cli',
    version=VERSION,
    description='Command-line installer and manager for the Fixpanic agent',
    long_description=long_description,
    long_description_content_type='text/markdown',
    author='Fixpanic',
    url='https://github.com/fixpanic/fixpanic-cli',
    packages=find_packages(include=['fixpanic', 'fixpanic.*']),
    install_requires=install_requires,
    extras_require=extras_require,
    entry_points={
        'console_scripts': [
            'fixpanic=fixpanic.cli:main',
        ],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'Operating System :: Microsoft :: Windows',
        'Operating System :: POSIX :: Linux',
        'Operating System :: MacOS :: MacOS X',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: System :: Installation/Setup',
        'Topic :: System :: Systems Administration',
    ],
    python_requires='>=3.8',
    keywords='fixpanic agent installer systemd launchd',
    project_urls={
        'Source': 'https://github.com/fixpanic/fixpanic-cli',
        'Bug Reports': 'https://github.com/fixpanic/fixpanic-cli/issues',
    },
)
