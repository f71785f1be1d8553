from setuptools import setup, find_packages
setup(
    name="arborist_permits",
    version="0.0.1",
    package_dir={"": "src"},
    packages=find_packages("src"),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "beautifulsoup4",
        "httpx",
        "pydantic>=2",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'arborist-permits=arborist_permits.__main__:_safe_main'
        ]
    }
)
