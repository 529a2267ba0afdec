# setup.py

from setuptools import setup, find_packages

setup(
    name='kconf',
    version='0.1.0',
    description='Persistent flat key/value configuration with stale-write detection.',
    packages=find_packages(include=['kconf', 'kconf.*']),
    include_package_data=True,
    zip_safe=False,
    python_requires='>=3.8',
    install_requires=[
        'click>=8.0.0',
        'rich>=12.0.0',
    ],
    extras_require={
        'test': [
            'pytest>=7.0.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'kconf=kconf.cli:main',
        ],
    },
)
