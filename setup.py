"""
Setup configuration for picolink (MicroPython raw-REPL link).

This is a pure Python library with no GUI dependencies.
It can be installed via:
    - pip install .
    - pip install -e .  (for development)
"""

from setuptools import setup, find_packages

package_name = 'picolink'

setup(
    name=package_name,
    version='1.0.0',
    packages=find_packages(exclude=['test', 'tests']),

    install_requires=[
        'setuptools',
        'pyserial>=3.5',
    ],

    extras_require={
        'dev': [
            'pytest>=7.0',
            'pytest-cov',
            'pytest-timeout',
        ],
    },

    zip_safe=True,

    description='Terminal passthrough and file transfer for MicroPython boards over serial',
    long_description=open('README.md').read() if __import__('os').path.exists('README.md') else '',
    long_description_content_type='text/markdown',
    license='MIT',

    tests_require=['pytest'],

    entry_points={
        'console_scripts': [
            'picolink = picolink.cli:main',
        ],
    },

    python_requires='>=3.8',

    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Topic :: Software Development :: Embedded Systems',
    ],
)
